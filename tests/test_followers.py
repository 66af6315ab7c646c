"""Tests for log followers."""

import asyncio
import shutil

import pytest

from session_monitor.monitors import followers
from session_monitor.monitors.followers import (
    TailFollower,
    WatchdogFollower,
    create_follower,
)


def append(path, text):
    with open(path, "a") as f:
        f.write(text)


@pytest.mark.skipif(shutil.which("tail") is None, reason="tail not installed")
async def test_tail_follower_emits_only_new_lines(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("old line that must not be replayed\n")

    follower = TailFollower(log_file)
    await follower.start()
    try:
        line = None
        for _ in range(20):
            append(log_file, "sshd[1]: new line\n")
            try:
                line = await asyncio.wait_for(follower.readline(), timeout=0.5)
                break
            except TimeoutError:
                continue
        assert line == "sshd[1]: new line"
    finally:
        await follower.close()

    # lines from retried appends may still be buffered before EOF
    remaining = [await follower.readline() for _ in range(21)]
    assert None in remaining


@pytest.mark.skipif(shutil.which("tail") is None, reason="tail not installed")
async def test_tail_follower_close_is_idempotent(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("")

    follower = TailFollower(log_file)
    await follower.start()
    await follower.close()
    await follower.close()


async def test_tail_follower_requires_start(tmp_path):
    follower = TailFollower(tmp_path / "auth.log")
    with pytest.raises(RuntimeError):
        await follower.readline()


async def test_watchdog_follower_reads_appended_lines(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("existing\n")

    follower = WatchdogFollower(log_file)
    await follower.start()
    try:
        append(log_file, "first\nsecond\npart")
        follower._read_new_content()
        assert await follower.readline() == "first"
        assert await follower.readline() == "second"

        append(log_file, "ial\n")
        follower._read_new_content()
        assert await follower.readline() == "partial"
    finally:
        await follower.close()

    assert await follower.readline() is None


async def test_watchdog_follower_handles_rotation(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("before rotation\n")

    follower = WatchdogFollower(log_file)
    await follower.start()
    try:
        log_file.rename(tmp_path / "auth.log.1")
        log_file.write_text("after rotation\n")
        follower._read_new_content()
        assert await asyncio.wait_for(follower.readline(), timeout=1.0) == "after rotation"
    finally:
        await follower.close()


async def test_watchdog_follower_handles_truncation(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("a fairly long line before truncation\n")

    follower = WatchdogFollower(log_file)
    await follower.start()
    try:
        log_file.write_text("short\n")
        follower._read_new_content()
        assert await asyncio.wait_for(follower.readline(), timeout=1.0) == "short"
    finally:
        await follower.close()


class BrokenHandle:
    def seek(self, offset, whence=0):
        raise OSError("Input/output error")

    def close(self):
        pass


async def test_watchdog_follower_resumes_after_read_error(tmp_path):
    log_file = tmp_path / "auth.log"
    log_file.write_text("history\n")

    follower = WatchdogFollower(log_file)
    await follower.start()
    try:
        append(log_file, "first\n")
        follower._read_new_content()
        assert await follower.readline() == "first"

        real_handle = follower._file_handle
        follower._file_handle = BrokenHandle()
        follower._read_new_content()
        real_handle.close()
        assert follower._file_handle is None

        append(log_file, "second\n")
        follower._read_new_content()
        assert await asyncio.wait_for(follower.readline(), timeout=1.0) == "second"
        assert follower._queue.empty()
    finally:
        await follower.close()


def test_create_follower_explicit_kinds(tmp_path):
    assert isinstance(create_follower("tail", tmp_path / "a"), TailFollower)
    assert isinstance(create_follower("watchdog", tmp_path / "a"), WatchdogFollower)


def test_create_follower_auto_falls_back_without_tail(tmp_path, monkeypatch):
    monkeypatch.setattr(followers.shutil, "which", lambda name: None)
    assert isinstance(create_follower("auto", tmp_path / "a"), WatchdogFollower)

    monkeypatch.setattr(followers.shutil, "which", lambda name: "/usr/bin/tail")
    assert isinstance(create_follower("auto", tmp_path / "a"), TailFollower)
