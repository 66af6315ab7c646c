"""Authentication log monitor: SSH login/logout detection and correlation."""

import asyncio
import logging
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from ..core.bus import EventBus
from ..core.deduplicator import LogoutDeduplicator
from ..core.errors import LogSourceError, MonitorError
from ..core.events import (
    UNKNOWN_IP,
    UNKNOWN_PORT,
    UNKNOWN_USER,
    EventKind,
    SessionEvent,
)
from ..core.sessions import SessionKey, SessionTable
from .followers import FollowerKind, LineFollower, create_follower
from .patterns import LoginMatch, LogoutMatch, parse_line
from .server import ServerInfoProvider, detect_log_path

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class AuthLogMonitor:
    """
    Follow the auth log and publish SSH session events on the bus.

    Logout lines often lack the username or the source address. Missing
    fields are filled from the session table of open logins, then from
    logouts emitted within the dedup window, and finally with sentinel
    placeholders. Repeated logouts for one session within the window are
    suppressed.
    """

    def __init__(
        self,
        bus: EventBus,
        server_info: ServerInfoProvider | None = None,
        log_path: str | Path | None = None,
        follower: FollowerKind = "auto",
        dedup_window: float = 5.0,
        janitor_interval: float = 1.0,
        stop_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bus = bus
        self.server_info = server_info
        self.log_path: Path | None = Path(log_path) if log_path else None
        self.follower_kind = follower
        self.janitor_interval = janitor_interval
        self.stop_timeout = stop_timeout

        self.sessions = SessionTable()
        self.deduplicator = LogoutDeduplicator(dedup_window, clock=clock)
        self.state = MonitorState.NOT_STARTED

        self._follower: LineFollower | None = None
        self._stop_event = asyncio.Event()
        self._read_task: asyncio.Task | None = None
        self._janitor_task: asyncio.Task | None = None

    def _resolve_log_path(self) -> Path:
        path = self.log_path or detect_log_path()

        if not path.exists():
            raise LogSourceError(f"Auth log file does not exist: {path}")
        if not path.is_file() or not os.access(path, os.R_OK):
            raise LogSourceError(
                f"Permission denied reading {path}. "
                "Try running with sudo or add user to 'adm' group"
            )
        return path

    async def start(self) -> None:
        """
        Resolve the log file and start following it.

        Raises:
            LogSourceError: If the log file is missing or unreadable
            MonitorError: If the monitor was already started
        """
        if self.state is not MonitorState.NOT_STARTED:
            raise MonitorError(f"Cannot start auth log monitor in state {self.state.value}")

        self.log_path = self._resolve_log_path()
        logger.info(f"Starting auth log monitor on {self.log_path}")

        self._follower = create_follower(self.follower_kind, self.log_path)
        try:
            await self._follower.start()
        except OSError as e:
            raise LogSourceError(f"Cannot follow {self.log_path}: {e}") from e

        self._janitor_task = asyncio.create_task(
            self.deduplicator.run_janitor(self.janitor_interval)
        )
        self._read_task = asyncio.create_task(self._read_loop())
        self.state = MonitorState.RUNNING

    async def _read_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                line = await self._follower.readline()
                if line is None:
                    if not self._stop_event.is_set():
                        logger.error(f"Auth log stream for {self.log_path} ended")
                    break
                if line.strip():
                    await self.process_line(line)
        except asyncio.CancelledError:
            raise
        except OSError as e:
            logger.error(f"Error reading auth log {self.log_path}: {e}")
        except Exception as e:
            logger.error(f"Auth log monitor failed: {e}", exc_info=True)
        finally:
            if not self._stop_event.is_set():
                logger.warning("Auth log monitor will not be restarted automatically")

    async def wait_closed(self) -> None:
        """Wait until the read loop exits, for whatever reason."""
        if self._read_task is not None:
            await asyncio.gather(self._read_task, return_exceptions=True)

    async def stop(self) -> None:
        """Stop following the log and wait for the read loop to exit."""
        if self.state is MonitorState.NOT_STARTED:
            self.state = MonitorState.STOPPED
            return
        if self.state is not MonitorState.RUNNING:
            return

        self.state = MonitorState.STOPPING
        self._stop_event.set()
        await self._follower.close()

        try:
            await asyncio.wait_for(self._read_task, timeout=self.stop_timeout)
        except TimeoutError:
            logger.warning(
                "Auth log read loop did not exit within %ss, cancelled",
                self.stop_timeout,
            )

        self._janitor_task.cancel()
        await asyncio.gather(self._janitor_task, return_exceptions=True)

        self.state = MonitorState.STOPPED
        logger.info("Auth log monitor stopped")

    async def process_line(self, line: str) -> SessionEvent | None:
        """Classify one log line and publish the resulting event, if any."""
        parsed = parse_line(line)
        if parsed is None:
            return None

        if isinstance(parsed, LoginMatch):
            return self._handle_login(parsed)
        return await self._handle_logout(parsed)

    def _handle_login(self, match: LoginMatch) -> SessionEvent:
        event = self._build_event(EventKind.LOGIN, match.username, match.ip, match.port)
        self.sessions.record_login(match.username, match.ip, match.port, event.timestamp)

        logger.info(
            "Detected login: username=%s, ip=%s, port=%s",
            match.username,
            match.ip,
            match.port,
        )
        self.bus.publish(event)
        return event

    async def _handle_logout(self, match: LogoutMatch) -> SessionEvent | None:
        key = await self._correlate(match)

        if not await self.deduplicator.check_and_record(key):
            logger.debug("Skipped duplicate logout (%s) for %s", match.pattern, key)
            return None

        event = self._build_event(EventKind.LOGOUT, *key)
        logger.info(
            "Detected logout: username=%s, ip=%s, port=%s",
            key.username,
            key.ip,
            key.port,
        )
        self.bus.publish(event)

        if event.is_resolved:
            self.sessions.remove(key)
        return event

    async def _correlate(self, match: LogoutMatch) -> SessionKey:
        """Fill the fields a logout line did not carry."""
        username, ip, port = match.username, match.ip, match.port

        if username is None:
            record = self.sessions.find_by_address(ip, port)
            if record is not None:
                username = record.username
            else:
                recent = await self.deduplicator.recent_by_address(ip, port)
                username = recent.username if recent else UNKNOWN_USER

        elif ip is None:
            record = self.sessions.find_by_username(username)
            if record is not None:
                ip, port = record.ip, record.port
            else:
                recent = await self.deduplicator.recent_by_username(username)
                if recent is not None:
                    ip, port = recent.ip, recent.port
                else:
                    ip, port = UNKNOWN_IP, UNKNOWN_PORT

        return SessionKey(username, ip, port)

    def _build_event(
        self, kind: EventKind, username: str, ip: str, port: str
    ) -> SessionEvent:
        return SessionEvent(
            kind=kind,
            username=username,
            ip=ip,
            port=port,
            timestamp=datetime.now(UTC),
            server_info=self.server_info.current if self.server_info else None,
        )
