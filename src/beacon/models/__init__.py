"""
Data models for Beacon
"""

from .emergency import (
    AcknowledgeOutcome, Emergency, EmergencyCategory, EmergencyStatus, ResponderEndpoint
)
from .location import Coordinates, distance_km, format_distance

__all__ = [
    'AcknowledgeOutcome',
    'Emergency',
    'EmergencyCategory',
    'EmergencyStatus',
    'ResponderEndpoint',
    'Coordinates',
    'distance_km',
    'format_distance'
]
