"""Shared caches of the sync engine.

This module provides:
- ChangeCache: content hash + timestamp per path, for echo suppression
- BaseContentStore: last-synced bytes per path ("previously synced")
- PathLocks: per-path in-flight set with synchronous test-and-set

Folder paths end with "/"; renaming or forgetting a folder path applies
to every key beneath it.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from leafsync.core.config import DEBOUNCE_DELAY

if TYPE_CHECKING:
    from leafsync.client.state import LocalSyncState

logger = logging.getLogger(__name__)

V = TypeVar("V")


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of content."""
    return hashlib.sha256(data).hexdigest()


def _rename_keys(store: dict[str, V], old: str, new: str) -> None:
    if old.endswith("/"):
        for key in [k for k in store if k.startswith(old)]:
            store[new + key[len(old):]] = store.pop(key)
    elif old in store:
        store[new] = store.pop(old)


def _forget_keys(store: dict[str, V], path: str) -> None:
    if path.endswith("/"):
        for key in [k for k in store if k.startswith(path)]:
            del store[key]
    else:
        store.pop(path, None)


@dataclass
class CacheEntry:
    hash: str
    timestamp: float


class ChangeCache:
    """Last observed content hash per path.

    A change propagates only when its hash differs from the cached one and
    the previous observation is older than the debounce window. Suppressed
    changes still refresh the cache.
    """

    def __init__(
        self,
        debounce: float = DEBOUNCE_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._debounce = debounce
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, path: str) -> CacheEntry | None:
        return self._entries.get(path)

    def should_propagate(self, path: str, content: bytes) -> bool:
        """Decide whether an observed change is genuine, updating the cache."""
        now = self._clock()
        new_hash = content_hash(content)
        cached = self._entries.get(path)

        if cached is not None:
            if cached.hash == new_hash:
                return False
            if now - cached.timestamp < self._debounce:
                self._entries[path] = CacheEntry(new_hash, now)
                return False

        self._entries[path] = CacheEntry(new_hash, now)
        return True

    def record(self, path: str, content: bytes) -> None:
        """Record content written or pushed by the engine itself."""
        self._entries[path] = CacheEntry(content_hash(content), self._clock())

    def forget(self, path: str) -> None:
        _forget_keys(self._entries, path)

    def rename(self, old: str, new: str) -> None:
        _rename_keys(self._entries, old, new)

    def clear(self) -> None:
        self._entries.clear()


class BaseContentStore:
    """Last-synced bytes per path.

    A path is recorded only after the corresponding write or push
    completed; failed and skipped operations never add entries. When a
    LocalSyncState is attached, the set of recorded paths is persisted so
    that `previously_synced()` survives restarts.
    """

    def __init__(self, state: LocalSyncState | None = None) -> None:
        self._content: dict[str, bytes] = {}
        self._state = state

    def __contains__(self, path: object) -> bool:
        return path in self._content

    def __len__(self) -> int:
        return len(self._content)

    def get(self, path: str) -> bytes | None:
        return self._content.get(path)

    def set(self, path: str, content: bytes) -> None:
        self._content[path] = content
        if self._state is not None:
            self._state.mark_synced(path, content_hash(content))

    def discard(self, path: str) -> None:
        _forget_keys(self._content, path)
        if self._state is not None:
            if path.endswith("/"):
                self._state.remove_prefix(path)
            else:
                self._state.remove_file(path)

    def rename(self, old: str, new: str) -> None:
        _rename_keys(self._content, old, new)
        if self._state is not None:
            self._state.rename_prefix(old, new)

    def previously_synced(self, path: str) -> bool:
        if path in self._content:
            return True
        return self._state is not None and self._state.is_tracked(path)

    def synced_paths(self) -> set[str]:
        """Every path recorded in memory or in persistent state."""
        paths = set(self._content)
        if self._state is not None:
            paths.update(self._state.list_paths())
        return paths

    def clear(self) -> None:
        """Drop in-memory content; persistent markers are kept."""
        self._content.clear()


class PathLocks:
    """Set of paths with an operation in flight.

    acquire() is a synchronous test-and-set; callers that fail to acquire
    drop their event.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def acquire(self, path: str) -> bool:
        if path in self._held:
            return False
        self._held.add(path)
        return True

    def release(self, path: str) -> None:
        self._held.discard(path)

    def is_held(self, path: str) -> bool:
        return path in self._held

    @contextmanager
    def hold(self, path: str) -> Iterator[bool]:
        """Acquire for the duration of a block; yields whether it was acquired."""
        acquired = self.acquire(path)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(path)

    def __len__(self) -> int:
        return len(self._held)
