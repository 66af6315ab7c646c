"""Tests for server identity and auth log discovery."""

import asyncio
import socket
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from session_monitor.core.errors import LogSourceError, ServerInfoError
from session_monitor.core.events import ServerInfo
from session_monitor.monitors import server
from session_monitor.monitors.server import (
    ServerInfoProvider,
    detect_log_path,
    detect_os_family,
    get_server_info,
)


def addr(family, address):
    return SimpleNamespace(family=family, address=address)


@pytest.mark.parametrize(
    "os_release,family",
    [
        ({"ID": "ubuntu", "ID_LIKE": "debian"}, "debian"),
        ({"ID": "debian"}, "debian"),
        ({"ID": "centos", "ID_LIKE": "rhel fedora"}, "rhel"),
        ({"ID": "rocky", "ID_LIKE": "rhel centos fedora"}, "rhel"),
        ({"ID": "amzn", "ID_LIKE": "centos rhel fedora"}, "rhel"),
        ({"ID": "opensuse-leap", "ID_LIKE": "suse opensuse"}, "suse"),
        ({"ID": "sles"}, "suse"),
        ({"ID": "pop", "ID_LIKE": "ubuntu debian"}, "debian"),
        ({"ID": "alpine"}, None),
        ({}, None),
    ],
)
def test_detect_os_family(os_release, family):
    assert detect_os_family(os_release) == family


def test_detect_log_path_per_family():
    with patch.object(server.os, "access", return_value=True):
        assert detect_log_path({"ID": "ubuntu"}) == Path("/var/log/auth.log")
        assert detect_log_path({"ID": "centos"}) == Path("/var/log/secure")
        assert detect_log_path({"ID": "sles"}) == Path("/var/log/messages")


def test_detect_log_path_unknown_distro():
    with pytest.raises(LogSourceError, match="alpine"):
        detect_log_path({"ID": "alpine"})


def test_detect_log_path_unreadable():
    with patch.object(server.os, "access", return_value=False):
        with pytest.raises(LogSourceError, match="not readable"):
            detect_log_path({"ID": "debian"})


def test_get_server_info_skips_loopback_and_ipv6():
    interfaces = {
        "lo": [addr(socket.AF_INET, "127.0.0.1")],
        "eth0": [addr(socket.AF_INET6, "fe80::1"), addr(socket.AF_INET, "10.1.2.3")],
    }
    with (
        patch.object(server.psutil, "net_if_addrs", return_value=interfaces),
        patch.object(server.socket, "gethostname", return_value="web-1"),
        patch.object(
            server, "read_os_release", return_value={"PRETTY_NAME": "Ubuntu 22.04 LTS"}
        ),
    ):
        info = get_server_info()

    assert info == ServerInfo(hostname="web-1", ip="10.1.2.3", os_type="Ubuntu 22.04 LTS")


def test_get_server_info_without_ipv4_fails():
    interfaces = {"lo": [addr(socket.AF_INET, "127.0.0.1")]}
    with patch.object(server.psutil, "net_if_addrs", return_value=interfaces):
        with pytest.raises(ServerInfoError):
            get_server_info()


def test_get_server_info_unknown_os():
    interfaces = {"eth0": [addr(socket.AF_INET, "10.1.2.3")]}
    with (
        patch.object(server.psutil, "net_if_addrs", return_value=interfaces),
        patch.object(server, "read_os_release", return_value={}),
    ):
        assert get_server_info().os_type == "unknown"


def test_provider_first_failure_is_fatal():
    def resolver():
        raise ServerInfoError("no address")

    provider = ServerInfoProvider(resolver=resolver)
    with pytest.raises(ServerInfoError):
        provider.refresh()
    assert provider.current is None


def test_provider_keeps_last_snapshot_on_later_failure():
    snapshots = [ServerInfo(hostname="web-1", ip="10.1.2.3")]

    def resolver():
        if snapshots:
            return snapshots.pop()
        raise ServerInfoError("interface went away")

    provider = ServerInfoProvider(resolver=resolver)
    first = provider.refresh()

    assert provider.refresh() is first
    assert provider.current is first


async def test_provider_run_survives_resolver_errors(caplog):
    snapshot = ServerInfo(hostname="web-1", ip="10.1.2.3")
    calls = []

    def resolver():
        calls.append(1)
        if len(calls) == 1:
            return snapshot
        raise OSError("interface query failed")

    provider = ServerInfoProvider(resolver=resolver)
    provider.refresh()

    task = asyncio.create_task(provider.run(interval=0))
    try:
        for _ in range(100):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
        assert len(calls) >= 3
        assert not task.done()
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert provider.current is snapshot
    assert any("refresh failed" in r.message for r in caplog.records)
