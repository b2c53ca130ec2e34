"""Two-way synchronization of a local folder with a project.

Architecture:
    FileWatcher → LocalChangeHandler ─┐
                                      ├─► SyncContext (index, caches, locks)
    ConnectionManager → RemoteChangeHandler ─┘
    Reconciler (pull-all) ─► ConflictResolver ─► ConflictPrompter

Components:
- **SyncEngine**: Owns the shared state and the connect/disconnect lifecycle
- **EntityTreeIndex**: Bidirectional id ↔ path map of the project tree
- **LocalChangeHandler**: Pushes local creates, modifications and deletions
- **RemoteChangeHandler**: Applies remote structural and OT events
- **Reconciler**: Pull-all with conflict and deletion classification
- **ot**: Coarse diff and sequential application of OT components
"""

from leafsync.client.sync.cache import BaseContentStore, ChangeCache, PathLocks, content_hash
from leafsync.client.sync.conflict import (
    AutoPrompter,
    ConflictChoice,
    ConflictPrompter,
    ConflictResolver,
    LocalOnlyChoice,
    PromptChoice,
    RemoteDeletedChoice,
)
from leafsync.client.sync.context import SyncContext, is_text_file
from leafsync.client.sync.engine import SyncEngine
from leafsync.client.sync.filesystem import LocalFileSystem
from leafsync.client.sync.ignore import IgnorePatterns
from leafsync.client.sync.local_changes import LocalChangeHandler
from leafsync.client.sync.reconcile import Reconciler
from leafsync.client.sync.remote_changes import RemoteChangeHandler
from leafsync.client.sync.tree import EntityEntry, EntityTreeIndex
from leafsync.client.sync.types import OTApplyError, PullResult, ReconcileError, SyncError
from leafsync.client.sync.watcher import FileWatcher

__all__ = [
    "AutoPrompter",
    "BaseContentStore",
    "ChangeCache",
    "ConflictChoice",
    "ConflictPrompter",
    "ConflictResolver",
    "EntityEntry",
    "EntityTreeIndex",
    "FileWatcher",
    "IgnorePatterns",
    "LocalChangeHandler",
    "LocalFileSystem",
    "LocalOnlyChoice",
    "OTApplyError",
    "PathLocks",
    "PromptChoice",
    "PullResult",
    "ReconcileError",
    "Reconciler",
    "RemoteChangeHandler",
    "RemoteDeletedChoice",
    "SyncContext",
    "SyncEngine",
    "SyncError",
    "content_hash",
    "is_text_file",
]
