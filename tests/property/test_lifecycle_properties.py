"""
Property-Based Tests for the emergency lifecycle

Random sequences of signals and acknowledgments are replayed against the
in-memory store and checked against a simple model.
"""

import asyncio

from hypothesis import given, settings, strategies as st

from beacon.core.memory_store import InMemoryDocumentStore
from beacon.models.emergency import AcknowledgeOutcome
from beacon.services.emergency.emergency_store import EmergencyStore
from beacon.services.emergency.lifecycle_controller import EmergencyLifecycleController
from beacon.services.emergency.notification_dispatcher import NotificationDispatcher
from beacon.services.emergency.token_registry import TokenRegistry
from tests.mocks.push_mocks import RecordingPushGateway


# ("signal", _) creates a record; ("ack", n) acknowledges the n-th record created so far
operations = st.lists(
    st.one_of(
        st.tuples(st.just("signal"), st.just(0)),
        st.tuples(st.just("ack"), st.integers(min_value=0, max_value=20)),
    ),
    max_size=25
)


def build_controller():
    store = InMemoryDocumentStore()
    registry = TokenRegistry(store)
    dispatcher = NotificationDispatcher(RecordingPushGateway(), registry)
    return EmergencyLifecycleController(EmergencyStore(store), dispatcher, registry)


class TestLifecycleProperties:
    """Latest-open view and acknowledgment outcomes follow the model"""

    @settings(max_examples=60, deadline=None)
    @given(operations)
    def test_latest_open_is_newest_open_record(self, ops):
        async def scenario():
            controller = build_controller()
            seen = []
            controller.subscribe_latest_open(seen.append)

            created = []
            acknowledged = set()
            for op, n in ops:
                if op == "signal":
                    created.append(await controller.signal("Other", 0.0, 0.0))
                elif created:
                    target = created[n % len(created)]
                    outcome = await controller.ack_current(target)
                    if target in acknowledged:
                        assert outcome == AcknowledgeOutcome.ALREADY_ACKNOWLEDGED
                    else:
                        assert outcome == AcknowledgeOutcome.ACKNOWLEDGED
                        acknowledged.add(target)

                still_open = [i for i in created if i not in acknowledged]
                expected = still_open[-1] if still_open else None
                current = seen[-1].id if seen[-1] is not None else None
                assert current == expected

            await controller.drain()

        asyncio.run(scenario())

    @settings(max_examples=30, deadline=None)
    @given(st.integers(min_value=1, max_value=10))
    def test_exactly_one_concurrent_acknowledger_wins(self, responders):
        async def scenario():
            controller = build_controller()
            emergency_id = await controller.signal("Fire", 0.0, 0.0)
            outcomes = await asyncio.gather(
                *[controller.ack_current(emergency_id) for _ in range(responders)]
            )
            await controller.drain()
            return outcomes

        outcomes = asyncio.run(scenario())

        assert outcomes.count(AcknowledgeOutcome.ACKNOWLEDGED) == 1
        assert outcomes.count(AcknowledgeOutcome.ALREADY_ACKNOWLEDGED) == responders - 1
