"""
Notification Dispatcher

Best-effort fan-out of one notification to every responder endpoint.
Failures are logged and reported through the return value; they never
propagate to the caller.
"""

from typing import Any, Dict, Iterable, Optional

from ...core.logging import LogContext, get_logger, get_structured_logger
from .push_gateway import DEFAULT_CHANNEL_ID, PushGateway, PushMessage
from .token_registry import TokenRegistry


class NotificationDispatcher:
    """Sends a single push batch per notification"""

    def __init__(self, gateway: PushGateway, registry: Optional[TokenRegistry] = None,
                 channel_id: str = DEFAULT_CHANNEL_ID):
        self.gateway = gateway
        self.registry = registry
        self.channel_id = channel_id
        self.logger = get_logger('emergency.dispatcher')
        self.events = get_structured_logger('emergency.dispatcher')

    async def notify(self, tokens: Iterable[str], title: str, body: str,
                     payload: Dict[str, Any]) -> bool:
        """
        Send one message per distinct token as a single batch.

        Returns:
            True if the gateway accepted the batch, False when there was
            nothing to send or delivery failed
        """
        destinations = sorted(set(tokens))
        if not destinations:
            self.logger.debug("No responder tokens registered, skipping dispatch")
            return False

        messages = [
            PushMessage(
                to=token,
                title=title,
                body=body,
                data=dict(payload),
                channel_id=self.channel_id
            )
            for token in destinations
        ]

        with LogContext(self.events, emergency_id=payload.get('id')) as events:
            try:
                await self.gateway.deliver(messages)
            except Exception as e:
                # Delivery is best effort; the caller's record is already durable
                events.warning(
                    "dispatch_failed",
                    recipients=len(messages),
                    title=title,
                    error=str(e),
                    error_type=type(e).__name__
                )
                return False

            events.info("dispatch_sent", recipients=len(messages), title=title)
            return True

    async def notify_responders(self, title: str, body: str,
                                payload: Dict[str, Any]) -> bool:
        """Dispatch to a snapshot of every registered responder"""
        if self.registry is None:
            raise RuntimeError("NotificationDispatcher has no token registry")

        try:
            tokens = await self.registry.list_tokens()
        except Exception as e:
            self.logger.error(f"Could not read responder tokens: {e}")
            return False

        return await self.notify(tokens, title, body, payload)
