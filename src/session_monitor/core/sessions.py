"""In-memory session table used to correlate logouts with prior logins."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple

logger = logging.getLogger(__name__)


class SessionKey(NamedTuple):
    """Composite identity of an SSH session."""

    username: str
    ip: str
    port: str

    def __str__(self) -> str:
        return "|".join(self)


@dataclass
class SessionRecord:
    username: str
    ip: str
    port: str
    last_login: datetime

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.username, self.ip, self.port)


class SessionTable:
    """
    Mapping of session keys to the time of their last login.

    The table has a single writer: the detector's read loop. It carries no
    lock, so processing lines from more than one task requires adding one.
    Records are only removed when a logout is correlated; a login without
    a matching logout stays until the process exits.
    """

    def __init__(self) -> None:
        self._records: dict[SessionKey, SessionRecord] = {}

    def record_login(
        self, username: str, ip: str, port: str, when: datetime
    ) -> SessionRecord:
        """Insert or refresh the record for a login."""
        record = SessionRecord(username, ip, port, when)
        self._records[record.key] = record
        logger.debug("Session opened: %s (%d active)", record.key, len(self._records))
        return record

    def get(self, key: SessionKey) -> SessionRecord | None:
        return self._records.get(key)

    def find_by_address(self, ip: str, port: str) -> SessionRecord | None:
        """
        Return the first record whose source address matches.

        When several records match, the winner follows dict iteration order
        and callers must not rely on which one it is.
        """
        for record in self._records.values():
            if record.ip == ip and record.port == port:
                return record
        return None

    def find_by_username(self, username: str) -> SessionRecord | None:
        """Return the first record for ``username`` (see find_by_address)."""
        for record in self._records.values():
            if record.username == username:
                return record
        return None

    def remove(self, key: SessionKey) -> bool:
        """Drop the record for ``key``; returns whether it existed."""
        removed = self._records.pop(key, None) is not None
        if removed:
            logger.debug("Session closed: %s (%d active)", key, len(self._records))
        return removed

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(list(self._records.values()))
