"""
Emergency Lifecycle Controller

Coordinates the victim and responder flows over a shared emergency
record:
- signal: durable create, then a best-effort dispatch task
- acknowledge: conditional claim of an open record
- subscriptions and responder registration
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Union

from ...core.document_store import NotFoundError, Subscription
from ...models.emergency import AcknowledgeOutcome, EmergencyCategory
from .emergency_store import EmergencyCallback, EmergencyStore
from .notification_dispatcher import NotificationDispatcher
from .token_registry import TokenRegistry


class EmergencyLifecycleController:
    """
    Orchestrates emergency creation, dispatch and acknowledgment
    """

    def __init__(self, emergencies: EmergencyStore, dispatcher: NotificationDispatcher,
                 registry: TokenRegistry, config: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or {}
        self.emergencies = emergencies
        self.dispatcher = dispatcher
        self.registry = registry

        notifications = self.config.get('notifications', {})
        self.title_prefix = notifications.get('title_prefix', 'Emergency: ')
        self.coordinate_precision = notifications.get('coordinate_precision', 4)

        # Pending dispatch tasks; held so they are not garbage collected
        self._dispatch_tasks: Set[asyncio.Task] = set()

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatch_tasks)

    def format_title(self, category: EmergencyCategory) -> str:
        return f"{self.title_prefix}{category.value}"

    def format_body(self, latitude: float, longitude: float) -> str:
        precision = self.coordinate_precision
        return f"Location: {latitude:.{precision}f}, {longitude:.{precision}f}"

    async def signal(self, category: Union[EmergencyCategory, str],
                     latitude: float, longitude: float) -> str:
        """
        Raise an emergency and notify responders.

        The record is written first; dispatch runs as a separate task
        afterwards and its outcome never affects the returned id.

        Args:
            category: Emergency category
            latitude: Victim latitude
            longitude: Victim longitude

        Returns:
            Identifier of the new emergency

        Raises:
            ValueError: Invalid category or coordinates
            PersistenceError: The record could not be written
        """
        category = EmergencyCategory.parse(category)
        emergency_id = await self.emergencies.create(category, latitude, longitude)

        payload = {
            'id': emergency_id,
            'category': category.value,
            'lat': latitude,
            'lng': longitude,
        }
        task = asyncio.create_task(
            self._dispatch(
                emergency_id,
                self.format_title(category),
                self.format_body(latitude, longitude),
                payload
            ),
            name=f"dispatch-{emergency_id}"
        )
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

        self.logger.info(f"Emergency {emergency_id} signaled ({category.value})")
        return emergency_id

    async def _dispatch(self, emergency_id: str, title: str, body: str,
                        payload: Dict[str, Any]) -> bool:
        try:
            sent = await self.dispatcher.notify_responders(title, body, payload)
        except Exception as e:
            self.logger.error(f"Dispatch for emergency {emergency_id} failed: {e}")
            return False

        if not sent:
            self.logger.warning(f"Responders were not notified of emergency {emergency_id}")
        return sent

    async def ack_current(self, emergency_id: str) -> AcknowledgeOutcome:
        """
        Acknowledge an emergency on behalf of a responder.

        Returns:
            ACKNOWLEDGED for the responder whose claim performed the
            transition, ALREADY_ACKNOWLEDGED for everyone else, NOT_FOUND
            when the record does not exist

        Raises:
            PersistenceError: Transport failure
        """
        try:
            outcome = await self.emergencies.acknowledge(emergency_id)
        except NotFoundError:
            self.logger.warning(f"Cannot acknowledge emergency {emergency_id}: not found")
            return AcknowledgeOutcome.NOT_FOUND

        self.logger.info(f"Acknowledge of emergency {emergency_id}: {outcome.value}")
        return outcome

    def subscribe_one(self, emergency_id: str, on_update: EmergencyCallback) -> Subscription:
        return self.emergencies.subscribe_one(emergency_id, on_update)

    def subscribe_latest_open(self, on_update: EmergencyCallback) -> Subscription:
        return self.emergencies.subscribe_latest_open(on_update)

    async def register_responder(self, token: Optional[str]) -> Optional[str]:
        return await self.registry.register(token)

    async def drain(self) -> None:
        """Wait for every pending dispatch task to finish"""
        while self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)
