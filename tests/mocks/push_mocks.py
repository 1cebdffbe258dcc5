"""
Mock push gateways used in Beacon tests.
"""
from typing import List

from beacon.services.emergency.push_gateway import DispatchError, PushGateway, PushMessage


class RecordingPushGateway(PushGateway):
    """Gateway that keeps every batch it is handed."""

    def __init__(self):
        self.batches: List[List[PushMessage]] = []
        self.started = False
        self.closed = False

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def deliver(self, messages):
        self.batches.append(list(messages))

    @property
    def call_count(self) -> int:
        return len(self.batches)


class FailingPushGateway(PushGateway):
    """Gateway whose every delivery fails."""

    def __init__(self, error: Exception = None):
        self.error = error or DispatchError("gateway unreachable")
        self.attempts = 0

    async def deliver(self, messages):
        self.attempts += 1
        raise self.error
