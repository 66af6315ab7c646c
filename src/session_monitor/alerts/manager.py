"""Fan session events out to the enabled notifiers."""

import asyncio
import logging

from ..core.bus import Subscription
from ..core.events import SessionEvent
from .notifiers import Notifier

logger = logging.getLogger(__name__)


class NotifierManager:
    """Deliver every bus event to all enabled notifiers concurrently."""

    def __init__(self, notifiers: list[Notifier]) -> None:
        self.notifiers = notifiers

    async def dispatch(self, event: SessionEvent) -> None:
        """Send ``event`` through every enabled notifier. Never raises."""
        active = [n for n in self.notifiers if n.enabled]
        logger.info(
            "Dispatching %s event: %s@%s to %d notifier(s)",
            event.kind.value,
            event.username,
            event.ip,
            len(active),
        )

        results = await asyncio.gather(
            *(notifier.send(event) for notifier in active), return_exceptions=True
        )
        for notifier, result in zip(active, results):
            if isinstance(result, Exception):
                logger.error(
                    "Failed to send %s notification via %s: %s",
                    event.kind.value,
                    notifier.name,
                    result,
                )

    async def run(self, subscription: Subscription) -> None:
        """Consume the subscription until it is closed."""
        logger.info("Notifier manager started with %d notifier(s)", len(self.notifiers))
        async for event in subscription:
            await self.dispatch(event)
        logger.info("Notifier manager stopped")

    async def close(self) -> None:
        await asyncio.gather(
            *(notifier.close() for notifier in self.notifiers), return_exceptions=True
        )
