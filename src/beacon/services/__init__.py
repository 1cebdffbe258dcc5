"""
Beacon services
"""
