"""
Core infrastructure: configuration, logging and document stores
"""
