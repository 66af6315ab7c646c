"""Logout deduplication for session monitoring."""

import asyncio
import heapq
import logging
import time
from collections.abc import Callable

from .sessions import SessionKey

logger = logging.getLogger(__name__)


class LogoutDeduplicator:
    """
    Suppress repeated logout events for the same session.

    One disconnect usually leaves several lines in the auth log (for example
    "Received disconnect" followed by "session closed"). The first logout
    for a key is emitted and remembered for ``window_seconds``; any further
    logout for that key inside the window is suppressed.

    Expired entries are removed by a single janitor task draining a min-heap
    of expiry times. An entry older than the window counts as absent even
    before the janitor has removed it.
    """

    def __init__(
        self,
        window_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the logout deduplicator.

        Args:
            window_seconds: Time window for considering logouts as duplicates
            clock: Monotonic time source, injectable for tests
        """
        self.window_seconds = window_seconds
        self._clock = clock
        self.recent_logouts: dict[SessionKey, float] = {}
        self._expiry_heap: list[tuple[float, SessionKey]] = []
        self._lock = asyncio.Lock()

    def _is_live(self, emitted_at: float, now: float) -> bool:
        return now - emitted_at < self.window_seconds

    async def check_and_record(self, key: SessionKey) -> bool:
        """
        Record a logout for ``key`` unless one was recorded within the window.

        Returns:
            True if the logout should be emitted, False if it is a duplicate
        """
        async with self._lock:
            now = self._clock()
            emitted_at = self.recent_logouts.get(key)
            if emitted_at is not None and self._is_live(emitted_at, now):
                logger.debug(
                    "Duplicate logout suppressed: %s (%.2fs ago)", key, now - emitted_at
                )
                return False

            self.recent_logouts[key] = now
            heapq.heappush(self._expiry_heap, (now + self.window_seconds, key))
            return True

    async def recent_by_username(self, username: str) -> SessionKey | None:
        """Return a live recorded key for ``username``, if any."""
        return await self._find(lambda key: key.username == username)

    async def recent_by_address(self, ip: str, port: str) -> SessionKey | None:
        """Return a live recorded key for the source address, if any."""
        return await self._find(lambda key: key.ip == ip and key.port == port)

    async def _find(self, predicate: Callable[[SessionKey], bool]) -> SessionKey | None:
        async with self._lock:
            now = self._clock()
            for key, emitted_at in self.recent_logouts.items():
                if predicate(key) and self._is_live(emitted_at, now):
                    return key
            return None

    async def purge_expired(self) -> int:
        """Remove every entry whose window has elapsed. Returns the count."""
        removed = 0
        async with self._lock:
            now = self._clock()
            while self._expiry_heap and self._expiry_heap[0][0] <= now:
                expires_at, key = heapq.heappop(self._expiry_heap)
                emitted_at = self.recent_logouts.get(key)
                # a newer emission for the same key pushed its own heap entry
                if emitted_at is not None and emitted_at + self.window_seconds <= expires_at:
                    del self.recent_logouts[key]
                    removed += 1
        if removed:
            logger.debug("Purged %d expired logout entries", removed)
        return removed

    async def run_janitor(self, interval: float = 1.0) -> None:
        """Periodically purge expired entries until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.purge_expired()

    def __len__(self) -> int:
        return len(self.recent_logouts)
