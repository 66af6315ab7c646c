"""Periodic system resource sampling."""

import asyncio
import logging
from collections import Counter
from time import monotonic
from typing import Any

import psutil

logger = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(value: float) -> str:
    """Render a byte count with a binary unit, e.g. '1.50 KB'."""
    for unit in _UNITS[:-1]:
        if value < 1024:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} {_UNITS[-1]}"


class SystemMonitor:
    """Log CPU, memory, disk, network, TCP and process metrics."""

    def __init__(self, interval: float = 60.0, disk_path: str = "/", top_processes: int = 5):
        self.interval = interval
        self.disk_path = disk_path
        self.top_processes = top_processes
        self._last_net: tuple[float, int, int] | None = None

    def _network(self) -> dict[str, Any]:
        counters = psutil.net_io_counters()
        now = monotonic()
        rates = {"sent_per_sec": 0.0, "recv_per_sec": 0.0}
        if self._last_net is not None:
            then, sent, recv = self._last_net
            elapsed = now - then
            if elapsed > 0:
                rates["sent_per_sec"] = (counters.bytes_sent - sent) / elapsed
                rates["recv_per_sec"] = (counters.bytes_recv - recv) / elapsed
        self._last_net = (now, counters.bytes_sent, counters.bytes_recv)
        return {
            "bytes_sent": counters.bytes_sent,
            "bytes_recv": counters.bytes_recv,
            **rates,
        }

    def _tcp_states(self) -> dict[str, int]:
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            logger.debug("Access denied listing TCP connections")
            return {}
        return dict(Counter(conn.status for conn in connections))

    def _processes(self) -> list[dict[str, Any]]:
        processes = []
        for proc in psutil.process_iter(["pid", "name", "cpu_percent", "memory_percent"]):
            info = proc.info
            if info.get("cpu_percent") is None:
                continue
            processes.append(info)
        processes.sort(key=lambda p: p["cpu_percent"], reverse=True)
        return processes[: self.top_processes]

    def sample(self) -> dict[str, Any]:
        """Collect one snapshot. Blocking; run it off the event loop."""
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage(self.disk_path)
        return {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory": {
                "total": memory.total,
                "used": memory.used,
                "percent": memory.percent,
            },
            "disk": {
                "path": self.disk_path,
                "total": disk.total,
                "used": disk.used,
                "percent": disk.percent,
            },
            "network": self._network(),
            "tcp": self._tcp_states(),
            "processes": self._processes(),
        }

    def log_sample(self, snapshot: dict[str, Any]) -> None:
        network = snapshot["network"]
        logger.info(
            "CPU: %.1f%% | MEM: %s/%s (%.1f%%) | DISK %s: %s/%s (%.1f%%)",
            snapshot["cpu_percent"],
            format_bytes(snapshot["memory"]["used"]),
            format_bytes(snapshot["memory"]["total"]),
            snapshot["memory"]["percent"],
            snapshot["disk"]["path"],
            format_bytes(snapshot["disk"]["used"]),
            format_bytes(snapshot["disk"]["total"]),
            snapshot["disk"]["percent"],
        )
        logger.info(
            "NET: sent %s (%s/s), recv %s (%s/s)",
            format_bytes(network["bytes_sent"]),
            format_bytes(network["sent_per_sec"]),
            format_bytes(network["bytes_recv"]),
            format_bytes(network["recv_per_sec"]),
        )
        if snapshot["tcp"]:
            logger.info(
                "TCP: %s",
                ", ".join(f"{state}={count}" for state, count in sorted(snapshot["tcp"].items())),
            )
        for proc in snapshot["processes"]:
            logger.debug(
                "PROC: pid=%s name=%s cpu=%.1f%% mem=%.1f%%",
                proc["pid"],
                proc["name"],
                proc["cpu_percent"],
                proc.get("memory_percent") or 0.0,
            )

    async def run(self) -> None:
        """Sample and log every ``interval`` seconds until cancelled."""
        logger.info("Starting system monitor (interval: %ss)", self.interval)
        while True:
            try:
                snapshot = await asyncio.to_thread(self.sample)
                self.log_sample(snapshot)
            except (OSError, psutil.Error) as e:
                logger.error("System sampling failed: %s", e)
            await asyncio.sleep(self.interval)
