"""Server identity resolution and auth log discovery."""

import asyncio
import logging
import os
import platform
import socket
from pathlib import Path

import psutil

from ..core.errors import LogSourceError, ServerInfoError
from ..core.events import ServerInfo

logger = logging.getLogger(__name__)

# OS family -> authentication log written by the distribution's syslog setup
AUTH_LOG_PATHS: dict[str, Path] = {
    "debian": Path("/var/log/auth.log"),
    "rhel": Path("/var/log/secure"),
    "suse": Path("/var/log/messages"),
}

OS_FAMILIES: dict[str, str] = {
    "debian": "debian",
    "ubuntu": "debian",
    "linuxmint": "debian",
    "raspbian": "debian",
    "rhel": "rhel",
    "centos": "rhel",
    "fedora": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
    "amzn": "rhel",
    "ol": "rhel",
    "suse": "suse",
    "sles": "suse",
    "opensuse": "suse",
    "opensuse-leap": "suse",
    "opensuse-tumbleweed": "suse",
}


def read_os_release() -> dict[str, str]:
    """Return /etc/os-release as a dict, or an empty dict if unavailable."""
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


def detect_os_family(os_release: dict[str, str]) -> str | None:
    """Map an os-release dict to 'debian', 'rhel' or 'suse'."""
    candidates = [os_release.get("ID", "")]
    candidates.extend(os_release.get("ID_LIKE", "").split())
    for candidate in candidates:
        family = OS_FAMILIES.get(candidate.lower())
        if family:
            return family
    return None


def detect_log_path(os_release: dict[str, str] | None = None) -> Path:
    """
    Pick the auth log for this distribution.

    Raises:
        LogSourceError: If the distribution is unknown or its log is unreadable
    """
    if os_release is None:
        os_release = read_os_release()

    family = detect_os_family(os_release)
    if family is None:
        raise LogSourceError(
            f"Cannot determine auth log for OS '{os_release.get('ID', 'unknown')}'; "
            "set monitoring.log_file"
        )

    path = AUTH_LOG_PATHS[family]
    if not os.access(path, os.R_OK):
        raise LogSourceError(f"Auth log {path} for {family} family is not readable")

    logger.info("Detected %s family, using auth log %s", family, path)
    return path


def _first_ipv4() -> str | None:
    for iface, addresses in psutil.net_if_addrs().items():
        for address in addresses:
            if address.family != socket.AF_INET:
                continue
            if address.address.startswith("127."):
                continue
            logger.debug("Using address %s of interface %s", address.address, iface)
            return address.address
    return None


def get_server_info() -> ServerInfo:
    """Resolve hostname, first non-loopback IPv4 and OS type."""
    ip = _first_ipv4()
    if ip is None:
        raise ServerInfoError("No non-loopback IPv4 address found")

    os_release = read_os_release()
    os_type = os_release.get("PRETTY_NAME") or os_release.get("ID") or "unknown"

    return ServerInfo(hostname=socket.gethostname(), ip=ip, os_type=os_type)


class ServerInfoProvider:
    """Cache of the latest server identity, refreshed periodically."""

    def __init__(self, resolver=get_server_info):
        self._resolver = resolver
        self._current: ServerInfo | None = None

    @property
    def current(self) -> ServerInfo | None:
        return self._current

    def refresh(self) -> ServerInfo:
        """
        Re-resolve the server identity.

        The first failure propagates; after that a failure keeps the last
        known snapshot.
        """
        try:
            info = self._resolver()
        except ServerInfoError as e:
            if self._current is None:
                raise
            logger.error(f"Failed to refresh server info: {e}")
            return self._current

        if info != self._current:
            logger.info(
                "Server info - hostname: %s, ip: %s, os: %s",
                info.hostname,
                info.ip,
                info.os_type,
            )
        self._current = info
        return info

    async def run(self, interval: float = 300.0) -> None:
        """Refresh every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.refresh)
            except (OSError, psutil.Error) as e:
                logger.error("Server info refresh failed: %s", e)
