"""Local state management for the sync client.

This module provides:
- LocalSyncState: SQLite record of previously-synced paths
- SyncedFile: A path whose content matched the remote at some point

Architecture:
    In-memory baseContent holds last-synced bytes for the running session.
    This database only persists *which* paths were synced (plus a content
    hash), so that a file missing remotely after a restart is still
    recognized as a remote deletion rather than a new local file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SyncedFile:
    """A tracked path that has been synced with the remote project.

    Attributes:
        path: Index path (e.g. "/chapters/intro.tex").
        content_hash: SHA-256 of the content when last synced.
        synced_at: Timestamp when the path was last synced.
    """

    path: str
    content_hash: str
    synced_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncedFile:
        """Build from a synced_files row."""
        return cls(
            path=row["path"],
            content_hash=row["content_hash"],
            synced_at=row["synced_at"],
        )


class LocalSyncState:
    """SQLite-based local state for the sync client."""

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the state database of a linked folder.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create the marker and key-value tables."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS synced_files (
                path TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL,
                synced_at REAL NOT NULL
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database."""
        self._conn.close()

    def __enter__(self) -> LocalSyncState:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Synced paths ===

    def get_file(self, path: str) -> SyncedFile | None:
        """Get a tracked file by path."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM synced_files WHERE path = ?",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return SyncedFile.from_row(row)

    def is_tracked(self, path: str) -> bool:
        return self.get_file(path) is not None

    def list_files(self) -> list[SyncedFile]:
        """List all tracked files, ordered by path."""
        with self._lock:
            rows = self._conn.execute("SELECT * FROM synced_files ORDER BY path").fetchall()
        return [SyncedFile.from_row(row) for row in rows]

    def list_paths(self) -> list[str]:
        return [f.path for f in self.list_files()]

    def mark_synced(self, path: str, content_hash: str) -> None:
        """Record that a path was successfully synced (upsert)."""
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO synced_files (path, content_hash, synced_at)
                VALUES (?, ?, ?)
                """,
                (path, content_hash, time.time()),
            )

    def remove_file(self, path: str) -> None:
        """Stop tracking a path."""
        with self._lock:
            self._conn.execute("DELETE FROM synced_files WHERE path = ?", (path,))

    def rename_prefix(self, old: str, new: str) -> None:
        """Move tracking from old to new.

        Folder paths (ending with "/") move every tracked descendant.
        """
        with self._lock:
            if old.endswith("/"):
                rows = self._conn.execute(
                    "SELECT path FROM synced_files WHERE substr(path, 1, ?) = ?",
                    (len(old), old),
                ).fetchall()
                for row in rows:
                    self._conn.execute(
                        "UPDATE OR REPLACE synced_files SET path = ? WHERE path = ?",
                        (new + row["path"][len(old):], row["path"]),
                    )
            else:
                self._conn.execute(
                    "UPDATE OR REPLACE synced_files SET path = ? WHERE path = ?",
                    (new, old),
                )

    def remove_prefix(self, prefix: str) -> None:
        """Stop tracking every path under a folder path."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM synced_files WHERE substr(path, 1, ?) = ?",
                (len(prefix), prefix),
            )

    # === Key-value state ===

    def get_state(self, key: str) -> str | None:
        """Read a key-value entry."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Write a key-value entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_project_id(self) -> str | None:
        """Project the tracked paths belong to."""
        return self.get_state("project_id")

    def set_project_id(self, project_id: str) -> None:
        """Bind the state to a project, clearing markers from any other one."""
        current = self.get_project_id()
        if current is not None and current != project_id:
            logger.info("Project changed from %s to %s, clearing sync markers", current, project_id)
            with self._lock:
                self._conn.execute("DELETE FROM synced_files")
        self.set_state("project_id", project_id)
