"""
Push Gateway Clients

Delivers batches of push messages. The Expo gateway posts the batch as a
JSON array to the Expo push API; the logging gateway only records what
would have been sent.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp


EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
DEFAULT_CHANNEL_ID = "emergency"


class DispatchError(Exception):
    """Push gateway unreachable or batch rejected"""
    pass


@dataclass(frozen=True)
class PushMessage:
    """One push message addressed to a single device token"""
    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    channel_id: str = DEFAULT_CHANNEL_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            'to': self.to,
            'title': self.title,
            'body': self.body,
            'data': dict(self.data),
            'channelId': self.channel_id,
        }


class PushGateway(ABC):
    """Abstract push delivery gateway"""

    async def start(self) -> None:
        """Acquire any resources the gateway needs"""

    async def close(self) -> None:
        """Release gateway resources"""

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def deliver(self, messages: List[PushMessage]) -> None:
        """
        Submit a batch of messages.

        Raises:
            DispatchError: If the gateway did not accept the batch
        """


class ExpoPushGateway(PushGateway):
    """
    Expo push API client

    Posts every batch as one JSON array. Per-ticket receipts are not read.
    """

    def __init__(self, url: str = EXPO_PUSH_URL, timeout: float = 30,
                 user_agent: str = "Beacon/1.0"):
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent
        self.logger = logging.getLogger(__name__)

        # Session for connection pooling
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        """Initialize the HTTP session"""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            headers = {
                'User-Agent': self.user_agent,
                'Accept': 'application/json',
                'Accept-Encoding': 'gzip, deflate',
            }

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers
            )

    async def close(self):
        """Close the HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def deliver(self, messages: List[PushMessage]) -> None:
        if not messages:
            return

        if not self.session:
            await self.start()

        payload = [message.to_dict() for message in messages]
        self.logger.debug(f"Posting {len(payload)} push messages to {self.url}")

        try:
            async with self.session.post(self.url, json=payload) as response:
                if 200 <= response.status < 300:
                    return
                error_text = await response.text()
                raise DispatchError(f"HTTP {response.status}: {error_text}")

        except aiohttp.ClientError as e:
            raise DispatchError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise DispatchError(f"Push gateway timed out after {self.timeout}s") from e


class LoggingPushGateway(PushGateway):
    """Gateway that logs batches instead of sending them"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.delivered: List[List[PushMessage]] = []

    async def deliver(self, messages: List[PushMessage]) -> None:
        self.delivered.append(list(messages))
        for message in messages:
            self.logger.info(f"Push to {message.to[:16]}...: {message.title} - {message.body}")
