"""Followers that yield lines appended to a growing log file."""

import asyncio
import io
import logging
import os
import shutil
from pathlib import Path
from typing import Literal, Protocol

from watchdog.events import (
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

FollowerKind = Literal["auto", "tail", "watchdog"]

# asyncio's default StreamReader limit is 64 KiB
_LINE_LIMIT = 1024 * 1024


class LineFollower(Protocol):
    path: Path

    async def start(self) -> None: ...

    async def readline(self) -> str | None: ...

    async def close(self) -> None: ...


class TailFollower:
    """Follow a file through a ``tail -n 0 -F`` subprocess."""

    def __init__(self, path: Path | str, terminate_timeout: float = 5.0):
        self.path = Path(path)
        self.terminate_timeout = terminate_timeout
        self._process: asyncio.subprocess.Process | None = None

    async def start(self) -> None:
        self._process = await asyncio.create_subprocess_exec(
            "tail",
            "-n",
            "0",
            "-F",
            str(self.path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            limit=_LINE_LIMIT,
        )
        logger.info("Started tail (pid %d) on %s", self._process.pid, self.path)

    async def readline(self) -> str | None:
        """Return the next line, or None when tail exited."""
        if self._process is None or self._process.stdout is None:
            raise RuntimeError("TailFollower.start() has not been called")

        while True:
            try:
                raw = await self._process.stdout.readline()
            except ValueError:
                logger.warning("Skipped auth log line longer than %d bytes", _LINE_LIMIT)
                continue
            if not raw:
                return None
            return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def close(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return

        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
        except TimeoutError:
            logger.warning("tail (pid %d) did not exit, killing it", process.pid)
            process.kill()
            await process.wait()
        logger.info("Stopped tail (pid %d)", process.pid)


class _LogFileHandler(FileSystemEventHandler):
    """Forward watchdog events for the followed file to the event loop."""

    def __init__(self, follower: "WatchdogFollower"):
        self.follower = follower

    def _is_target(self, path) -> bool:
        return Path(str(path)) == self.follower.path

    def on_modified(self, event: DirModifiedEvent | FileModifiedEvent):
        if not event.is_directory and self._is_target(event.src_path):
            self.follower.notify_changed()

    def on_created(self, event: FileCreatedEvent):
        if not event.is_directory and self._is_target(event.src_path):
            self.follower.notify_changed()

    def on_moved(self, event: DirMovedEvent | FileMovedEvent):
        if self._is_target(event.dest_path):
            self.follower.notify_changed()


class WatchdogFollower:
    """Follow a file with inotify (via watchdog), handling rotation."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._file_handle: io.TextIOWrapper | None = None
        self._current_inode: int | None = None
        self._position = 0
        self._partial_line = ""
        self._closed = False

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._open()

        self._observer = Observer()
        self._observer.schedule(
            _LogFileHandler(self), str(self.path.parent), recursive=False
        )
        self._observer.start()
        logger.info("Started watchdog observer on %s", self.path)

    def notify_changed(self) -> None:
        """Called from the watchdog thread."""
        if self._loop is not None and not self._closed:
            self._loop.call_soon_threadsafe(self._read_new_content)

    def _open(self, offset: int | None = None) -> None:
        """Open the file at ``offset``, or at its end when None."""
        self._close_file()
        self._file_handle = open(self.path, encoding="utf-8", errors="replace")
        self._current_inode = os.fstat(self._file_handle.fileno()).st_ino
        if offset is None:
            self._file_handle.seek(0, 2)
        else:
            self._file_handle.seek(offset)
        self._position = self._file_handle.tell()

    def _close_file(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

    def _read_new_content(self) -> None:
        if self._closed:
            return
        try:
            stat = self.path.stat()
            if stat.st_ino != self._current_inode:
                logger.info("Log rotation detected on %s", self.path)
                self._open(0)
                self._partial_line = ""
            elif self._file_handle is None:
                # same file after a read error, resume where we stopped
                logger.info("Reopening %s at offset %d", self.path, self._position)
                self._open(self._position)

            if stat.st_size < self._position:
                logger.info("Log truncation detected on %s", self.path)
                self._position = 0
                self._partial_line = ""

            self._file_handle.seek(self._position)
            new_content = self._file_handle.read()
            self._position = self._file_handle.tell()
        except OSError as e:
            logger.error("Error reading log file: %s", e)
            self._close_file()
            return

        if not new_content:
            return

        lines = (self._partial_line + new_content).split("\n")
        self._partial_line = lines[-1]  # Last line might be incomplete
        for line in lines[:-1]:
            self._queue.put_nowait(line.rstrip("\r"))

    async def readline(self) -> str | None:
        """Return the next line, or None once closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
        self._close_file()
        self._queue.put_nowait(None)
        logger.info("Stopped watchdog observer on %s", self.path)


def create_follower(kind: FollowerKind, path: Path | str) -> LineFollower:
    """Build a follower; 'auto' prefers tail when it is installed."""
    if kind == "tail":
        return TailFollower(path)
    if kind == "watchdog":
        return WatchdogFollower(path)
    if shutil.which("tail"):
        return TailFollower(path)
    logger.warning("tail not found, falling back to watchdog follower")
    return WatchdogFollower(path)
