"""
Emergency Lifecycle Service Module

Provides the emergency lifecycle engine:
- Emergency records with point and latest-open subscriptions
- Responder push token registry and notification fan-out
- Victim and responder role sessions
"""

from .emergency_service import EmergencyBeaconService
from .emergency_store import EmergencyStore
from .lifecycle_controller import EmergencyLifecycleController
from .location_provider import (
    LocationProvider, LocationUnavailable, PermissionDenied, StaticLocationProvider
)
from .notification_dispatcher import NotificationDispatcher
from .push_gateway import (
    DispatchError, ExpoPushGateway, LoggingPushGateway, PushGateway, PushMessage
)
from .sessions import ResponderSession, VictimSession
from .token_registry import TokenRegistry, normalize_token_key

__all__ = [
    'EmergencyBeaconService',
    'EmergencyStore',
    'EmergencyLifecycleController',
    'LocationProvider',
    'LocationUnavailable',
    'PermissionDenied',
    'StaticLocationProvider',
    'NotificationDispatcher',
    'DispatchError',
    'ExpoPushGateway',
    'LoggingPushGateway',
    'PushGateway',
    'PushMessage',
    'ResponderSession',
    'VictimSession',
    'TokenRegistry',
    'normalize_token_key'
]
