"""In-memory fan-out event bus."""

import asyncio
import logging
import threading

from .events import SessionEvent

logger = logging.getLogger(__name__)


class Subscription:
    """A subscriber's private, bounded view of the bus."""

    def __init__(self, buffer_size: int):
        # None is the close marker
        self.queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue(maxsize=buffer_size)
        self.dropped = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Mark the subscription closed and wake a consumer blocked in get()."""
        if self._closed:
            return
        self._closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # the consumer has buffered events to drain and is not blocked
            pass

    async def get(self) -> SessionEvent | None:
        """Wait for the next event; None once closed and drained."""
        if self._closed and self.queue.empty():
            return None
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> SessionEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    Publish session events to every subscriber.

    Publishing never blocks: when a subscriber's buffer is full its copy of
    the event is dropped so a slow notifier cannot stall the detector.
    """

    def __init__(self, buffer_size: int = 100):
        self.buffer_size = buffer_size
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        """Register a new subscriber for all subsequently published events."""
        subscription = Subscription(self.buffer_size)
        with self._lock:
            self._subscribers.append(subscription)
        logger.debug("Subscriber added (%d total)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove and close a subscriber. Unknown subscribers are ignored."""
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
            subscription.close()
        logger.debug("Subscriber removed (%d total)", len(self._subscribers))

    def publish(self, event: SessionEvent) -> int:
        """Fan ``event`` out to all subscribers. Returns how many received it."""
        delivered = 0
        with self._lock:
            for subscription in self._subscribers:
                try:
                    subscription.queue.put_nowait(event)
                    delivered += 1
                except asyncio.QueueFull:
                    subscription.dropped += 1
                    logger.warning(
                        "Subscriber buffer full, dropped %s event for %s",
                        event.kind.value,
                        event.username,
                    )
        return delivered

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            count = len(self._subscribers)
            for subscription in self._subscribers:
                subscription.close()
            self._subscribers.clear()
        logger.debug("Event bus closed (%d subscriber(s))", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
