"""
Role Sessions

A session owns one role's live subscription and the view derived from
it. Closing a session releases the subscription; the service closes the
active session whenever the role switches.
"""

import logging
from typing import Callable, Optional, Tuple, Union

from ...core.document_store import Subscription
from ...models.emergency import AcknowledgeOutcome, Emergency, EmergencyCategory
from ...models.location import format_distance
from .lifecycle_controller import EmergencyLifecycleController
from .location_provider import LocationProvider, LocationUnavailable, PermissionDenied


DEFAULT_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination={lat},{lng}"


class RoleSession:
    """Base for sessions holding a single subscription"""

    role = "unknown"

    def __init__(self, controller: EmergencyLifecycleController, locations: LocationProvider):
        self.controller = controller
        self.locations = locations
        self.logger = logging.getLogger(__name__)
        self._subscription: Optional[Subscription] = None
        self.closed = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _replace_subscription(self, subscription: Optional[Subscription]) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
        self._subscription = subscription

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"{self.role} session is closed")

    def close(self) -> None:
        """Release the live subscription; safe to call repeatedly"""
        if self.closed:
            return
        self.closed = True
        self._replace_subscription(None)
        self.logger.debug(f"{self.role} session closed")


class VictimSession(RoleSession):
    """
    Victim side: raises an emergency and watches it until a responder
    acknowledges.
    """

    role = "victim"

    def __init__(self, controller: EmergencyLifecycleController, locations: LocationProvider,
                 on_acknowledged: Optional[Callable[[Emergency], None]] = None):
        super().__init__(controller, locations)
        self.on_acknowledged = on_acknowledged
        self.emergency_id: Optional[str] = None
        self.emergency: Optional[Emergency] = None
        self._announced_id: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        return self.emergency is not None and self.emergency.is_acknowledged

    async def signal(self, category: Union[EmergencyCategory, str]) -> str:
        """
        Signal an emergency at the current position.

        Raises:
            PermissionDenied: Location access refused, nothing written
            LocationUnavailable: No position fix, nothing written
            PersistenceError: The record could not be written
        """
        self._ensure_open()
        position = await self.locations.require_position()

        emergency_id = await self.controller.signal(
            category, position.latitude, position.longitude
        )

        self._replace_subscription(None)
        self.emergency_id = emergency_id
        self.emergency = None
        self._replace_subscription(
            self.controller.subscribe_one(emergency_id, self._on_update)
        )
        return emergency_id

    def _on_update(self, emergency: Optional[Emergency]) -> None:
        if emergency is not None and emergency.id != self.emergency_id:
            return

        self.emergency = emergency
        if emergency is None or not emergency.is_acknowledged:
            return

        if self._announced_id != emergency.id:
            self._announced_id = emergency.id
            self.logger.info(f"Help is coming for emergency {emergency.id}")
            if self.on_acknowledged is not None:
                self.on_acknowledged(emergency)


class ResponderSession(RoleSession):
    """
    Responder side: registers for pushes, watches the latest open
    emergency and acknowledges it.
    """

    role = "responder"

    def __init__(self, controller: EmergencyLifecycleController, locations: LocationProvider,
                 push_token: Optional[str] = None,
                 directions_url: str = DEFAULT_DIRECTIONS_URL):
        super().__init__(controller, locations)
        self.push_token = push_token
        self.directions_url = directions_url
        self.current: Optional[Emergency] = None
        self.engaged: Optional[Emergency] = None
        self._hint_id: Optional[str] = None
        self._distance: Optional[Tuple[str, float]] = None

    async def activate(self) -> None:
        """Register the push token (if any) and start watching"""
        self._ensure_open()
        if self.push_token:
            await self.controller.register_responder(self.push_token)

        self._replace_subscription(self.controller.subscribe_latest_open(self._on_update))

    def _on_update(self, emergency: Optional[Emergency]) -> None:
        self.current = emergency
        current_id = emergency.id if emergency is not None else None
        if self._hint_id != current_id:
            self._hint_id = None
        if self._distance is not None and self._distance[0] != current_id:
            self._distance = None

    @property
    def acknowledged(self) -> bool:
        """Observed acknowledgment of the current emergency, or our pending claim on it"""
        if self.current is None:
            return False
        return self.current.is_acknowledged or self._hint_id == self.current.id

    async def acknowledge(self) -> Optional[AcknowledgeOutcome]:
        """Acknowledge the current emergency; None when nothing is open"""
        self._ensure_open()
        target = self.current
        if target is None:
            return None

        self._hint_id = target.id
        try:
            outcome = await self.controller.ack_current(target.id)
        except Exception:
            self._hint_id = None
            raise

        if outcome == AcknowledgeOutcome.NOT_FOUND:
            self._hint_id = None
        elif outcome == AcknowledgeOutcome.ACKNOWLEDGED:
            self.engaged = target
        return outcome

    async def refresh_distance(self) -> Optional[float]:
        """Distance in km from this responder to the current emergency"""
        target = self.current
        if target is None:
            self._distance = None
            return None

        try:
            position = await self.locations.current_position()
        except (PermissionDenied, LocationUnavailable) as e:
            self.logger.warning(f"Responder position unavailable: {e}")
            self._distance = None
            return None

        km = position.distance_to(target.coordinates)
        self._distance = (target.id, km)
        return km

    @property
    def distance_km(self) -> Optional[float]:
        if self._distance is None or self.current is None:
            return None
        emergency_id, km = self._distance
        return km if emergency_id == self.current.id else None

    @property
    def distance_label(self) -> Optional[str]:
        km = self.distance_km
        return format_distance(km) if km is not None else None

    @property
    def navigation_url(self) -> Optional[str]:
        """Directions to the claimed emergency, else to the current one"""
        target = self.engaged or self.current
        if target is None:
            return None
        return self.directions_url.format(lat=target.latitude, lng=target.longitude)
