"""Event definitions for session monitoring."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

UNKNOWN_USER = "unknown user"
UNKNOWN_IP = "unknown ip"
UNKNOWN_PORT = "unknown port"

SENTINELS = frozenset({UNKNOWN_USER, UNKNOWN_IP, UNKNOWN_PORT})


class EventKind(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"


class ServerInfo(BaseModel):
    """Identity of the monitored host, attached to every event."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    ip: str
    os_type: str = "unknown"


class SessionEvent(BaseModel):
    """Represents a detected SSH login or logout."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    username: str
    ip: str
    port: str
    timestamp: datetime
    server_info: ServerInfo | None = None

    @property
    def source(self) -> str:
        """Source address as shown in notifications."""
        if self.ip == UNKNOWN_IP:
            return self.ip
        if self.port == UNKNOWN_PORT:
            return self.ip
        return f"{self.ip}:{self.port}"

    @property
    def is_resolved(self) -> bool:
        """True when no identity field is a sentinel placeholder."""
        return not ({self.username, self.ip, self.port} & SENTINELS)
