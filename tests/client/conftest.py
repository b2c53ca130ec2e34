"""Shared fixtures for sync pipeline tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from leafsync.client.protocol import JoinedDocument, ProjectFolder
from leafsync.client.sync.cache import ChangeCache
from leafsync.client.sync.context import SyncContext
from leafsync.client.sync.filesystem import LocalFileSystem

PROJECT_ID = "p1"

ROOT_FOLDER = {
    "_id": "root",
    "name": "rootFolder",
    "docs": [{"_id": "d1", "name": "main.tex"}],
    "fileRefs": [{"_id": "f1", "name": "logo.png"}],
    "folders": [
        {
            "_id": "fo1",
            "name": "chapters",
            "docs": [{"_id": "d2", "name": "intro.tex"}],
        }
    ],
}


def _live_connection(lines: list[str] | None = None, version: int = 1) -> MagicMock:
    connection = MagicMock()
    connection.is_connected = True
    connection.join_doc = AsyncMock(return_value=JoinedDocument(lines=lines or [""], version=version))
    connection.leave_doc = AsyncMock()
    connection.apply_ot_update = AsyncMock()
    return connection


@pytest.fixture
def http() -> AsyncMock:
    """HTTP client mock with empty responses."""
    client = AsyncMock()
    client.upload_file.return_value = {"success": True}
    return client


@pytest.fixture
def ctx(tmp_path: Path, http: AsyncMock) -> SyncContext:
    """SyncContext over a temporary folder, indexed with ROOT_FOLDER."""
    context = SyncContext(
        PROJECT_ID,
        LocalFileSystem(tmp_path),
        http,
        change_cache=ChangeCache(debounce=0),
    )
    context.index.build(ProjectFolder.from_dict(ROOT_FOLDER))
    return context


@pytest.fixture
def live_connection() -> Callable[..., MagicMock]:
    """Factory of connected ConnectionManager stand-ins.

    join_doc answers with the given lines and version.
    """
    return _live_connection
