"""
Unit tests for the emergency store
"""

import asyncio

import pytest

from beacon.core.document_store import NotFoundError
from beacon.models.emergency import (
    AcknowledgeOutcome, EmergencyCategory, EmergencyStatus
)
from beacon.services.emergency.emergency_store import EMERGENCIES_COLLECTION, EmergencyStore
from tests.mocks.store_mocks import FlakyDocumentStore


class TestCreate:
    """Test emergency creation"""

    @pytest.mark.asyncio
    async def test_create_writes_open_record(self, emergencies, memory_store):
        emergency_id = await emergencies.create("Medical", 37.0, -122.0)

        doc = await memory_store.get(EMERGENCIES_COLLECTION, emergency_id)
        assert doc.data["category"] == "Medical"
        assert doc.data["lat"] == 37.0
        assert doc.data["lng"] == -122.0
        assert doc.data["status"] == "open"
        assert doc.data["createdAt"] is not None

    @pytest.mark.asyncio
    async def test_get_returns_model(self, emergencies):
        emergency_id = await emergencies.create(EmergencyCategory.FIRE, 1.0, 2.0)

        emergency = await emergencies.get(emergency_id)
        assert emergency.id == emergency_id
        assert emergency.category == EmergencyCategory.FIRE
        assert emergency.status == EmergencyStatus.OPEN
        assert emergency.is_open

    @pytest.mark.asyncio
    async def test_sequential_records_order_by_created_at(self, emergencies):
        ids = [await emergencies.create("Other", 0.0, 0.0) for _ in range(5)]
        records = [await emergencies.get(i) for i in ids]

        stamps = [r.created_at for r in records]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_unknown_category_rejected_before_write(self, emergencies, memory_store):
        with pytest.raises(ValueError):
            await emergencies.create("Alien invasion", 0.0, 0.0)
        assert await memory_store.list(EMERGENCIES_COLLECTION) == []

    @pytest.mark.asyncio
    async def test_invalid_coordinates_rejected_before_write(self, emergencies, memory_store):
        with pytest.raises(ValueError):
            await emergencies.create("Fire", 95.0, 0.0)
        assert await memory_store.list(EMERGENCIES_COLLECTION) == []


class TestAcknowledge:
    """Test the open -> acknowledged transition"""

    @pytest.mark.asyncio
    async def test_first_acknowledge_claims(self, emergencies):
        emergency_id = await emergencies.create("Medical", 0.0, 0.0)

        assert await emergencies.acknowledge(emergency_id) == AcknowledgeOutcome.ACKNOWLEDGED
        assert (await emergencies.get(emergency_id)).is_acknowledged

    @pytest.mark.asyncio
    async def test_second_acknowledge_is_noop(self, emergencies):
        emergency_id = await emergencies.create("Medical", 0.0, 0.0)
        await emergencies.acknowledge(emergency_id)

        outcome = await emergencies.acknowledge(emergency_id)
        assert outcome == AcknowledgeOutcome.ALREADY_ACKNOWLEDGED
        assert (await emergencies.get(emergency_id)).status == EmergencyStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_missing_record(self, emergencies):
        with pytest.raises(NotFoundError):
            await emergencies.acknowledge("missing")


class TestSubscriptions:
    """Test point and latest-open subscriptions"""

    @pytest.mark.asyncio
    async def test_subscribe_one(self, emergencies):
        emergency_id = await emergencies.create("Medical", 37.0, -122.0)
        seen = []

        emergencies.subscribe_one(emergency_id, seen.append)
        await emergencies.acknowledge(emergency_id)

        assert [e.status for e in seen] == [EmergencyStatus.OPEN, EmergencyStatus.ACKNOWLEDGED]
        assert seen[0].category == EmergencyCategory.MEDICAL
        assert (seen[0].latitude, seen[0].longitude) == (37.0, -122.0)

    @pytest.mark.asyncio
    async def test_subscribe_one_missing(self, emergencies):
        seen = []
        emergencies.subscribe_one("missing", seen.append)
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_subscribe_one_cancel(self, emergencies):
        emergency_id = await emergencies.create("Medical", 0.0, 0.0)
        seen = []

        unsubscribe = emergencies.subscribe_one(emergency_id, seen.append)
        unsubscribe()
        unsubscribe()
        await emergencies.acknowledge(emergency_id)

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_latest_open_empty(self, emergencies):
        seen = []
        emergencies.subscribe_latest_open(seen.append)
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_latest_open_follows_newest_then_falls_back(self, emergencies):
        seen = []
        emergencies.subscribe_latest_open(seen.append)

        a = await emergencies.create("Fire", 0.0, 0.0)
        b = await emergencies.create("Medical", 1.0, 1.0)
        assert seen[-1].id == b

        await emergencies.acknowledge(b)
        assert seen[-1].id == a

        await emergencies.acknowledge(a)
        assert seen[-1] is None

    @pytest.mark.asyncio
    async def test_latest_open_ignores_unrelated_changes(self, emergencies):
        a = await emergencies.create("Fire", 0.0, 0.0)
        b = await emergencies.create("Medical", 1.0, 1.0)
        seen = []
        emergencies.subscribe_latest_open(seen.append)

        await emergencies.acknowledge(a)

        assert [e.id for e in seen] == [b]

    @pytest.mark.asyncio
    async def test_latest_open_recovers_from_read_failure(self):
        store = FlakyDocumentStore()
        emergencies = EmergencyStore(store)
        emergency_id = await emergencies.create("Medical", 37.0, -122.0)
        seen = []

        store.fail_reads = True
        unsubscribe = emergencies.subscribe_latest_open(seen.append)
        store.fail_reads = False
        await asyncio.sleep(0.2)

        assert [e.id for e in seen] == [emergency_id]
        unsubscribe()

    @pytest.mark.asyncio
    async def test_subscribe_one_recovers_from_read_failure(self):
        store = FlakyDocumentStore()
        emergencies = EmergencyStore(store)
        emergency_id = await emergencies.create("Fire", 0.0, 0.0)
        seen = []

        store.fail_reads = True
        emergencies.subscribe_one(emergency_id, seen.append)
        store.fail_reads = False
        await asyncio.sleep(0.2)

        assert [e.status for e in seen] == [EmergencyStatus.OPEN]
