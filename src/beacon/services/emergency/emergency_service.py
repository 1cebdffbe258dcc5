"""
Emergency Beacon Service

Wires the document store, push gateway, token registry, dispatcher and
lifecycle controller from configuration, owns their start/stop, and
keeps at most one active role session.
"""

import logging
from typing import Any, Callable, Dict, Optional

from ...core.config import ConfigurationManager
from ...core.database import SQLiteDocumentStore
from ...core.document_store import DocumentStore
from ...core.logging import initialize_logging
from ...core.memory_store import InMemoryDocumentStore
from ...models.emergency import Emergency
from .emergency_store import EmergencyStore
from .lifecycle_controller import EmergencyLifecycleController
from .location_provider import LocationProvider
from .notification_dispatcher import NotificationDispatcher
from .push_gateway import EXPO_PUSH_URL, ExpoPushGateway, LoggingPushGateway, PushGateway
from .sessions import DEFAULT_DIRECTIONS_URL, ResponderSession, RoleSession, VictimSession
from .token_registry import TokenRegistry


class EmergencyBeaconService:
    """
    Main service coordinating the emergency lifecycle
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 store: Optional[DocumentStore] = None,
                 gateway: Optional[PushGateway] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or {}

        self.store = store or self._create_store()
        self.gateway = gateway or self._create_gateway()

        push_config = self.config.get('push', {})
        responders_config = self.config.get('responders', {})

        self.registry = TokenRegistry(
            self.store,
            max_key_length=responders_config.get('token_key_max_length', 150)
        )
        self.dispatcher = NotificationDispatcher(
            self.gateway,
            self.registry,
            channel_id=push_config.get('channel_id', 'emergency')
        )
        self.emergencies = EmergencyStore(self.store)
        self.controller = EmergencyLifecycleController(
            self.emergencies, self.dispatcher, self.registry, self.config
        )

        self.directions_url = self.config.get('navigation', {}).get(
            'directions_url', DEFAULT_DIRECTIONS_URL
        )
        self.session: Optional[RoleSession] = None

        # Service state
        self._running = False

    @classmethod
    def from_config_dir(cls, config_dir: str = "config") -> 'EmergencyBeaconService':
        """Load layered configuration, set up logging and build the service"""
        manager = ConfigurationManager(config_dir)
        manager.load_config()
        config = manager.as_dict()
        initialize_logging(config)
        return cls(config)

    @property
    def running(self) -> bool:
        return self._running

    def _create_store(self) -> DocumentStore:
        store_config = self.config.get('store', {})
        backend = store_config.get('backend', 'memory')

        if backend == 'memory':
            return InMemoryDocumentStore()
        if backend == 'sqlite':
            return SQLiteDocumentStore(
                store_config.get('path', 'data/beacon.db'),
                max_connections=store_config.get('max_connections', 10)
            )
        raise ValueError(f"Unknown store backend: {backend}")

    def _create_gateway(self) -> PushGateway:
        push_config = self.config.get('push', {})
        kind = push_config.get('gateway', 'expo')

        if kind == 'expo':
            return ExpoPushGateway(
                url=push_config.get('url', EXPO_PUSH_URL),
                timeout=push_config.get('timeout', 30)
            )
        if kind == 'log':
            return LoggingPushGateway()
        raise ValueError(f"Unknown push gateway: {kind}")

    async def start(self):
        """Start the emergency beacon service"""
        if self._running:
            return

        await self.gateway.start()
        self._running = True

        self.logger.info("Emergency Beacon Service started")

    async def stop(self):
        """Stop the service and release every resource it holds"""
        if not self._running:
            return

        self._running = False
        self.close_session()
        await self.controller.drain()
        await self.gateway.close()
        await self.store.close()

        self.logger.info("Emergency Beacon Service stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def close_session(self) -> None:
        """Close the active role session, if any"""
        if self.session is not None:
            self.session.close()
            self.session = None

    def open_victim_session(self, locations: LocationProvider,
                            on_acknowledged: Optional[Callable[[Emergency], None]] = None
                            ) -> VictimSession:
        """Switch to the victim role"""
        self.close_session()
        self.session = VictimSession(self.controller, locations, on_acknowledged)
        self.logger.info("Switched to victim role")
        return self.session

    async def open_responder_session(self, locations: LocationProvider,
                                     push_token: Optional[str] = None) -> ResponderSession:
        """Switch to the responder role and start watching for emergencies"""
        self.close_session()
        session = ResponderSession(
            self.controller, locations, push_token, directions_url=self.directions_url
        )
        await session.activate()
        self.session = session
        self.logger.info("Switched to responder role")
        return session
