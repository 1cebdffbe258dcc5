"""
Global pytest configuration and fixtures for Beacon testing.
"""
import tempfile
from pathlib import Path

import pytest

from beacon.core.memory_store import InMemoryDocumentStore
from beacon.services.emergency.emergency_store import EmergencyStore
from beacon.services.emergency.lifecycle_controller import EmergencyLifecycleController
from beacon.services.emergency.notification_dispatcher import NotificationDispatcher
from beacon.services.emergency.token_registry import TokenRegistry
from tests.mocks.push_mocks import RecordingPushGateway


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config():
    """Provide test configuration."""
    return {
        "app": {"name": "Beacon", "debug": True},
        "store": {"backend": "memory"},
        "push": {
            "gateway": "log",
            "url": "http://localhost/push",
            "channel_id": "emergency",
            "timeout": 5
        },
        "responders": {"token_key_max_length": 150},
        "notifications": {"title_prefix": "Emergency: ", "coordinate_precision": 4},
        "navigation": {
            "directions_url": "https://www.google.com/maps/dir/?api=1&destination={lat},{lng}"
        },
        "logging": {"level": "DEBUG", "console": False}
    }


@pytest.fixture
def memory_store():
    """Fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def gateway():
    """Push gateway that records every batch."""
    return RecordingPushGateway()


@pytest.fixture
def registry(memory_store):
    return TokenRegistry(memory_store)


@pytest.fixture
def dispatcher(gateway, registry):
    return NotificationDispatcher(gateway, registry)


@pytest.fixture
def emergencies(memory_store):
    return EmergencyStore(memory_store)


@pytest.fixture
def controller(emergencies, dispatcher, registry, test_config):
    return EmergencyLifecycleController(emergencies, dispatcher, registry, test_config)
