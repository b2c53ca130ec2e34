"""Sync status reporting.

This module provides:
- StatusEvent: A (status, message, path) notification
- StatusEmitter: Holds the current status and notifies subscribers

Architecture:
    Engine / pipelines ──set()──► StatusEmitter ──callback──► CLI status line
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from leafsync.core.types import SyncStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    """Status change notification.

    Attributes:
        status: New sync status.
        message: Optional human-readable detail.
        path: Path the status refers to, if any.
    """

    status: SyncStatus
    message: str | None = None
    path: str | None = None


StatusCallback = Callable[[StatusEvent], None]


class StatusEmitter:
    """Current sync status with subscriber notification.

    Usage:
        emitter = StatusEmitter()
        unsubscribe = emitter.subscribe(lambda event: print(event.status))
        emitter.set(SyncStatus.PUSHING, "Uploading main.tex", "/main.tex")
    """

    def __init__(self, initial: SyncStatus = SyncStatus.DISCONNECTED) -> None:
        self._current = StatusEvent(initial)
        self._subscribers: list[StatusCallback] = []
        self._lock = threading.Lock()

    @property
    def status(self) -> SyncStatus:
        return self._current.status

    @property
    def current(self) -> StatusEvent:
        return self._current

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback for status changes.

        Returns:
            A callable that unregisters the callback.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def set(
        self,
        status: SyncStatus,
        message: str | None = None,
        path: str | None = None,
    ) -> None:
        """Update the status and notify subscribers."""
        event = StatusEvent(status, message, path)
        self._current = event
        if status == SyncStatus.ERROR:
            logger.debug("Status error: %s (%s)", message, path)

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Status subscriber failed: {e}")
