"""File system watcher feeding the local change pipeline.

This module provides:
- AsyncEventBridge: watchdog handler that schedules pipeline coroutines
  on the engine's event loop
- FileWatcher: Starts and stops a recursive watchdog observer

Watchdog callbacks run on the observer thread; each event is handed to
the loop with call_soon_threadsafe and becomes its own task. Moves are
reported as a delete of the source followed by a create of the
destination.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from leafsync.client.sync.filesystem import LocalFileSystem
from leafsync.client.sync.local_changes import LocalChangeHandler

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class AsyncEventBridge(FileSystemEventHandler):
    """Translates watchdog events into LocalChangeHandler tasks."""

    def __init__(
        self,
        fs: LocalFileSystem,
        handler: LocalChangeHandler,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._fs = fs
        self._handler = handler
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _index_path(self, raw: str | bytes, is_dir: bool = False) -> str | None:
        path = self._fs.to_index_path(_decode(raw), is_dir=is_dir)
        if path is None or path == "/":
            return None
        return path

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        def start() -> None:
            task = self._loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        try:
            self._loop.call_soon_threadsafe(start)
        except RuntimeError:
            # Loop already closed
            coro.close()

    def on_created(self, event: FileSystemEvent) -> None:
        path = self._index_path(event.src_path, event.is_directory)
        if path is not None:
            self._schedule(self._handler.on_created(path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if isinstance(event, DirModifiedEvent):
            return
        path = self._index_path(event.src_path)
        if path is not None:
            self._schedule(self._handler.on_modified(path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = self._index_path(event.src_path, event.is_directory)
        if path is not None:
            self._schedule(self._handler.on_deleted(path))

    def on_moved(self, event: FileSystemEvent) -> None:
        src = self._index_path(event.src_path, event.is_directory)
        dest = self._index_path(event.dest_path, event.is_directory)
        if src is not None:
            self._schedule(self._handler.on_deleted(src))
        if dest is not None:
            self._schedule(self._handler.on_created(dest))

    async def drain(self) -> None:
        """Wait for every scheduled handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class FileWatcher:
    """Watches the sync folder and drives the local change pipeline."""

    def __init__(
        self,
        fs: LocalFileSystem,
        handler: LocalChangeHandler,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            fs: Filesystem rooted at the directory to watch.
            handler: Pipeline receiving the events.
            loop: Loop to run handlers on (the running loop by default).
        """
        self._watch_path = Path(fs.root)
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {self._watch_path}")
        self._bridge = AsyncEventBridge(fs, handler, loop or asyncio.get_running_loop())
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        return self._watch_path

    @property
    def bridge(self) -> AsyncEventBridge:
        return self._bridge

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return
        self._observer.schedule(self._bridge, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> FileWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
