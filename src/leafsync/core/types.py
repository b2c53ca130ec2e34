"""Shared types for leafsync."""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Current status of a sync engine.

    Reported through StatusEmitter to any subscribed UI surface.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    PULLING = "pulling"
    PUSHING = "pushing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class EntityKind(str, Enum):
    """Kind of a remote project entity."""

    DOC = "doc"
    FILE = "file"
    FOLDER = "folder"
