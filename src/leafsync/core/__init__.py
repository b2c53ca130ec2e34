"""Core module - Shared configuration and types."""

from leafsync.core.config import (
    CONFIG_DIR,
    DEBOUNCE_DELAY,
    DEFAULT_SERVER,
    HANDSHAKE_TIMEOUT,
    IGNORE_FILE,
    REQUEST_TIMEOUT,
    SETTINGS_FILE,
    STATE_FILE,
    Identity,
    ServerConfig,
)
from leafsync.core.types import EntityKind, SyncStatus

__all__ = [
    # Config
    "CONFIG_DIR",
    "DEBOUNCE_DELAY",
    "DEFAULT_SERVER",
    "HANDSHAKE_TIMEOUT",
    "IGNORE_FILE",
    "REQUEST_TIMEOUT",
    "SETTINGS_FILE",
    "STATE_FILE",
    "Identity",
    "ServerConfig",
    # Types
    "EntityKind",
    "SyncStatus",
]
