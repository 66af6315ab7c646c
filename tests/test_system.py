"""Tests for the system resource sampler."""

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import psutil
import pytest

from session_monitor.monitors import system
from session_monitor.monitors.system import SystemMonitor, format_bytes


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, "0.00 B"),
        (512, "512.00 B"),
        (1536, "1.50 KB"),
        (5 * 1024**3, "5.00 GB"),
        (3 * 1024**5, "3072.00 TB"),
    ],
)
def test_format_bytes(value, expected):
    assert format_bytes(value) == expected


def fake_psutil(monkeypatch, connections=None):
    monkeypatch.setattr(system.psutil, "cpu_percent", lambda interval=None: 12.5)
    monkeypatch.setattr(
        system.psutil,
        "virtual_memory",
        lambda: SimpleNamespace(total=8 * 1024**3, used=2 * 1024**3, percent=25.0),
    )
    monkeypatch.setattr(
        system.psutil,
        "disk_usage",
        lambda path: SimpleNamespace(total=100 * 1024**3, used=40 * 1024**3, percent=40.0),
    )
    monkeypatch.setattr(
        system.psutil,
        "net_io_counters",
        lambda: SimpleNamespace(bytes_sent=1000, bytes_recv=2000),
    )
    if connections is None:
        connections = [
            SimpleNamespace(status="ESTABLISHED"),
            SimpleNamespace(status="ESTABLISHED"),
            SimpleNamespace(status="LISTEN"),
        ]
    monkeypatch.setattr(
        system.psutil, "net_connections", MagicMock(return_value=connections)
    )
    procs = [
        SimpleNamespace(info={"pid": 1, "name": "init", "cpu_percent": 0.1, "memory_percent": 0.2}),
        SimpleNamespace(info={"pid": 2, "name": "sshd", "cpu_percent": 5.0, "memory_percent": 0.5}),
        SimpleNamespace(info={"pid": 3, "name": "zombie", "cpu_percent": None, "memory_percent": None}),
    ]
    monkeypatch.setattr(system.psutil, "process_iter", lambda attrs: iter(procs))


def test_sample_collects_all_sections(monkeypatch):
    fake_psutil(monkeypatch)
    snapshot = SystemMonitor(top_processes=5).sample()

    assert snapshot["cpu_percent"] == 12.5
    assert snapshot["memory"]["percent"] == 25.0
    assert snapshot["disk"]["path"] == "/"
    assert snapshot["network"]["bytes_sent"] == 1000
    assert snapshot["tcp"] == {"ESTABLISHED": 2, "LISTEN": 1}
    assert [p["name"] for p in snapshot["processes"]] == ["sshd", "init"]


def test_network_rates_use_previous_sample(monkeypatch):
    fake_psutil(monkeypatch)
    ticks = iter([100.0, 110.0])
    monkeypatch.setattr(system, "monotonic", lambda: next(ticks))
    monitor = SystemMonitor()
    monitor.sample()

    monkeypatch.setattr(
        system.psutil,
        "net_io_counters",
        lambda: SimpleNamespace(bytes_sent=3000, bytes_recv=2000),
    )
    snapshot = monitor.sample()

    assert snapshot["network"]["sent_per_sec"] == 200.0
    assert snapshot["network"]["recv_per_sec"] == 0


def test_tcp_states_access_denied(monkeypatch):
    fake_psutil(monkeypatch)
    monkeypatch.setattr(
        system.psutil, "net_connections", MagicMock(side_effect=psutil.AccessDenied())
    )
    assert SystemMonitor().sample()["tcp"] == {}


def test_log_sample(monkeypatch, caplog):
    fake_psutil(monkeypatch)
    monitor = SystemMonitor()

    with caplog.at_level(logging.INFO, logger="session_monitor.monitors.system"):
        monitor.log_sample(monitor.sample())

    messages = " ".join(r.getMessage() for r in caplog.records)
    assert "CPU: 12.5%" in messages
    assert "ESTABLISHED=2" in messages
