"""Tests for local change propagation."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from leafsync.client.api import NotFoundError
from leafsync.client.protocol import DocumentUpdate, OtOp
from leafsync.client.sync.context import SyncContext
from leafsync.client.sync.local_changes import LocalChangeHandler
from leafsync.core.types import EntityKind, SyncStatus


class TestOnModified:
    """Tests for modified files."""

    @pytest.mark.asyncio
    async def test_uploads_over_http(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        """Without a live session, content is uploaded into the parent folder."""
        (tmp_path / "main.tex").write_bytes(b"new")

        await LocalChangeHandler(ctx).on_modified("/main.tex")

        http.upload_file.assert_awaited_once_with("p1", "root", "main.tex", b"new")
        assert ctx.base_content.get("/main.tex") == b"new"
        assert ctx.status.status == SyncStatus.IDLE
        assert not ctx.locks.is_held("/main.tex")

    @pytest.mark.asyncio
    async def test_pushes_ot_when_live(
        self,
        ctx: SyncContext,
        http: AsyncMock,
        tmp_path: Path,
        live_connection: Callable[..., MagicMock],
    ) -> None:
        ctx.connection = live_connection(["old"], version=7)
        (tmp_path / "main.tex").write_bytes(b"new")

        await LocalChangeHandler(ctx).on_modified("/main.tex")

        ctx.connection.apply_ot_update.assert_awaited_once_with(
            "d1",
            DocumentUpdate(doc="d1", ops=[OtOp(p=0, d="old"), OtOp(p=0, i="new")], version=7),
        )
        http.upload_file.assert_not_awaited()
        assert "d1" in ctx.joined_docs

    @pytest.mark.asyncio
    async def test_echo_is_suppressed(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        """Content the engine itself wrote is not pushed back."""
        (tmp_path / "main.tex").write_bytes(b"same")
        ctx.record_synced("/main.tex", b"same")

        await LocalChangeHandler(ctx).on_modified("/main.tex")

        http.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_file(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "stray.tex").write_bytes(b"x")

        await LocalChangeHandler(ctx).on_modified("/stray.tex")

        assert ctx.status.status == SyncStatus.ERROR
        assert ctx.status.current.path == "/stray.tex"
        http.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_locked_path_is_dropped(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "main.tex").write_bytes(b"new")
        ctx.locks.acquire("/main.tex")

        await LocalChangeHandler(ctx).on_modified("/main.tex")

        http.upload_file.assert_not_awaited()
        assert ctx.locks.is_held("/main.tex")

    @pytest.mark.asyncio
    async def test_ignored_path(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "main.aux").write_bytes(b"x")

        await LocalChangeHandler(ctx).on_modified("/main.aux")

        http.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_file(self, ctx: SyncContext, http: AsyncMock) -> None:
        await LocalChangeHandler(ctx).on_modified("/main.tex")
        http.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_sets_error(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        """Push failures are reported, not raised, and release the lock."""
        (tmp_path / "main.tex").write_bytes(b"new")
        http.upload_file.side_effect = RuntimeError("offline")

        await LocalChangeHandler(ctx).on_modified("/main.tex")

        assert ctx.status.status == SyncStatus.ERROR
        assert "/main.tex" not in ctx.base_content
        assert not ctx.locks.is_held("/main.tex")


class TestOnCreated:
    """Tests for created files and folders."""

    @pytest.mark.asyncio
    async def test_text_file_in_new_folder(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        """Missing parent folders are created before the document."""
        (tmp_path / "figs").mkdir()
        (tmp_path / "figs" / "notes.tex").write_bytes(b"hello")
        http.add_folder.return_value = {"_id": "fo9", "name": "figs"}
        http.add_doc.return_value = {"_id": "d9", "name": "notes.tex"}

        await LocalChangeHandler(ctx).on_created("/figs/notes.tex")

        http.add_folder.assert_awaited_once_with("p1", "root", "figs")
        http.add_doc.assert_awaited_once_with("p1", "fo9", "notes.tex")
        http.upload_file.assert_awaited_once_with("p1", "fo9", "notes.tex", b"hello")
        entry = ctx.index.lookup_by_path("/figs/notes.tex")
        assert entry is not None
        assert entry.id == "d9"
        assert entry.kind == EntityKind.DOC
        assert ctx.base_content.get("/figs/notes.tex") == b"hello"

    @pytest.mark.asyncio
    async def test_text_file_pushes_initial_content_over_ot(
        self,
        ctx: SyncContext,
        http: AsyncMock,
        tmp_path: Path,
        live_connection: Callable[..., MagicMock],
    ) -> None:
        ctx.connection = live_connection([""], version=0)
        (tmp_path / "notes.tex").write_bytes(b"hello")
        http.add_doc.return_value = {"_id": "d9"}

        await LocalChangeHandler(ctx).on_created("/notes.tex")

        ctx.connection.apply_ot_update.assert_awaited_once_with(
            "d9", DocumentUpdate(doc="d9", ops=[OtOp(p=0, i="hello")], version=0)
        )

    @pytest.mark.asyncio
    async def test_empty_text_file(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "empty.tex").write_bytes(b"")
        http.add_doc.return_value = {"_id": "d9"}

        await LocalChangeHandler(ctx).on_created("/empty.tex")

        http.upload_file.assert_not_awaited()
        assert ctx.index.lookup_by_path("/empty.tex") is not None

    @pytest.mark.asyncio
    async def test_binary_file(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "chapters").mkdir()
        (tmp_path / "chapters" / "plot.png").write_bytes(b"\x89PNG")
        http.upload_file.return_value = {"success": True, "entity_id": "f9"}

        await LocalChangeHandler(ctx).on_created("/chapters/plot.png")

        http.upload_file.assert_awaited_once_with("p1", "fo1", "plot.png", b"\x89PNG")
        http.add_doc.assert_not_awaited()
        entry = ctx.index.lookup_by_path("/chapters/plot.png")
        assert entry is not None
        assert entry.kind == EntityKind.FILE

    @pytest.mark.asyncio
    async def test_directory(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "figs").mkdir()
        http.add_folder.return_value = {"_id": "fo9"}

        await LocalChangeHandler(ctx).on_created("/figs")

        http.add_folder.assert_awaited_once_with("p1", "root", "figs")
        assert ctx.index.lookup_by_path("/figs/").id == "fo9"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_directory_shares_lock_with_remote_handlers(
        self, ctx: SyncContext, http: AsyncMock, tmp_path: Path
    ) -> None:
        """A folder held under its trailing-slash path is not created twice."""
        (tmp_path / "figs").mkdir()
        ctx.locks.acquire("/figs/")

        await LocalChangeHandler(ctx).on_created("/figs")

        http.add_folder.assert_not_awaited()
        assert ctx.locks.is_held("/figs/")

    @pytest.mark.asyncio
    async def test_known_directory(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "chapters").mkdir()

        await LocalChangeHandler(ctx).on_created("/chapters")

        http.add_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_write_is_not_recreated(
        self, ctx: SyncContext, http: AsyncMock, tmp_path: Path
    ) -> None:
        """A file the engine downloaded is already indexed and cached."""
        (tmp_path / "main.tex").write_bytes(b"remote")
        ctx.change_cache.record("/main.tex", b"remote")

        await LocalChangeHandler(ctx).on_created("/main.tex")

        http.add_doc.assert_not_awaited()
        http.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_id_returned(self, ctx: SyncContext, http: AsyncMock, tmp_path: Path) -> None:
        (tmp_path / "notes.tex").write_bytes(b"x")
        http.add_doc.return_value = {}

        await LocalChangeHandler(ctx).on_created("/notes.tex")

        assert ctx.status.status == SyncStatus.ERROR
        assert ctx.index.lookup_by_path("/notes.tex") is None
        assert "/notes.tex" not in ctx.base_content


class TestOnDeleted:
    """Tests for deleted files and folders."""

    @pytest.mark.asyncio
    async def test_deletes_document(self, ctx: SyncContext, http: AsyncMock) -> None:
        ctx.record_synced("/main.tex", b"x")

        await LocalChangeHandler(ctx).on_deleted("/main.tex")

        http.delete_entity.assert_awaited_once_with("p1", EntityKind.DOC, "d1")
        assert ctx.index.lookup_by_id("d1") is None
        assert not ctx.base_content.previously_synced("/main.tex")

    @pytest.mark.asyncio
    async def test_deletes_folder(self, ctx: SyncContext, http: AsyncMock) -> None:
        """Folder events arrive without the trailing slash."""
        ctx.record_synced("/chapters/intro.tex", b"x")

        await LocalChangeHandler(ctx).on_deleted("/chapters")

        http.delete_entity.assert_awaited_once_with("p1", EntityKind.FOLDER, "fo1")
        assert ctx.index.lookup_by_id("d2") is None
        assert "/chapters/intro.tex" not in ctx.base_content

    @pytest.mark.asyncio
    async def test_folder_locked_remotely(self, ctx: SyncContext, http: AsyncMock) -> None:
        ctx.locks.acquire("/chapters/")

        await LocalChangeHandler(ctx).on_deleted("/chapters")

        http.delete_entity.assert_not_awaited()
        assert ctx.index.lookup_by_id("fo1") is not None

    @pytest.mark.asyncio
    async def test_leaves_joined_document(
        self, ctx: SyncContext, live_connection: Callable[..., MagicMock]
    ) -> None:
        ctx.connection = live_connection()
        ctx.joined_docs.add("d1")

        await LocalChangeHandler(ctx).on_deleted("/main.tex")

        ctx.connection.leave_doc.assert_awaited_once_with("d1")
        assert ctx.joined_docs == set()

    @pytest.mark.asyncio
    async def test_already_deleted_remotely(self, ctx: SyncContext, http: AsyncMock) -> None:
        http.delete_entity.side_effect = NotFoundError("gone", status_code=404)

        await LocalChangeHandler(ctx).on_deleted("/logo.png")

        assert ctx.index.lookup_by_id("f1") is None
        assert ctx.status.status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_unknown_path(self, ctx: SyncContext, http: AsyncMock) -> None:
        await LocalChangeHandler(ctx).on_deleted("/nothing.tex")
        http.delete_entity.assert_not_awaited()
