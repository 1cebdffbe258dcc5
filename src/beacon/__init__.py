"""
Beacon - two-role emergency signaling engine

A victim signals an emergency with a location and a category, every
registered responder is notified, and the first responder to
acknowledge is reported back to the victim.
"""

__version__ = "1.0.0"
