"""Tests for local sync state management.

The state database only records which paths were synced (plus a
content hash), so that remote deletions survive a restart.
"""

from collections.abc import Iterator
from pathlib import Path

import pytest

from leafsync.client.state import LocalSyncState


class TestSyncStateCreation:
    """Tests for LocalSyncState initialization."""

    def test_creates_database(self, tmp_path: Path) -> None:
        """Should create database file."""
        db_path = tmp_path / "state.db"
        state = LocalSyncState(db_path)

        assert db_path.exists()
        state.close()

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Should create parent directories."""
        db_path = tmp_path / "subdir" / "nested" / "state.db"
        state = LocalSyncState(db_path)

        assert db_path.exists()
        state.close()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Should reopen existing database with data preserved."""
        db_path = tmp_path / "state.db"

        with LocalSyncState(db_path) as state1:
            state1.mark_synced("/main.tex", "abc")

        with LocalSyncState(db_path) as state2:
            synced = state2.get_file("/main.tex")
            assert synced is not None
            assert synced.content_hash == "abc"


class TestSyncedFileOperations:
    """Tests for synced file operations."""

    @pytest.fixture
    def state(self, tmp_path: Path) -> Iterator[LocalSyncState]:
        """Create a LocalSyncState instance."""
        s = LocalSyncState(tmp_path / "state.db")
        yield s
        s.close()

    def test_mark_synced_upserts(self, state: LocalSyncState) -> None:
        state.mark_synced("/a.tex", "h1")
        state.mark_synced("/a.tex", "h2")

        files = state.list_files()
        assert len(files) == 1
        assert files[0].content_hash == "h2"

    def test_is_tracked(self, state: LocalSyncState) -> None:
        state.mark_synced("/a.tex", "h1")
        assert state.is_tracked("/a.tex")
        assert not state.is_tracked("/b.tex")

    def test_list_paths_sorted(self, state: LocalSyncState) -> None:
        state.mark_synced("/z.tex", "h")
        state.mark_synced("/a.tex", "h")
        assert state.list_paths() == ["/a.tex", "/z.tex"]

    def test_remove_file(self, state: LocalSyncState) -> None:
        state.mark_synced("/a.tex", "h")
        state.remove_file("/a.tex")
        assert state.get_file("/a.tex") is None

    def test_rename_file(self, state: LocalSyncState) -> None:
        state.mark_synced("/a.tex", "h")
        state.rename_prefix("/a.tex", "/b.tex")
        assert state.list_paths() == ["/b.tex"]

    def test_rename_folder_moves_descendants(self, state: LocalSyncState) -> None:
        """Renaming a folder path should move everything below it."""
        state.mark_synced("/ch/intro.tex", "h")
        state.mark_synced("/ch/sub/x.tex", "h")
        state.mark_synced("/chapter.tex", "h")

        state.rename_prefix("/ch/", "/parts/")

        assert state.list_paths() == ["/chapter.tex", "/parts/intro.tex", "/parts/sub/x.tex"]

    def test_remove_prefix(self, state: LocalSyncState) -> None:
        state.mark_synced("/ch/intro.tex", "h")
        state.mark_synced("/chapter.tex", "h")

        state.remove_prefix("/ch/")

        assert state.list_paths() == ["/chapter.tex"]


class TestSyncStateValues:
    """Tests for key-value sync state."""

    @pytest.fixture
    def state(self, tmp_path: Path) -> Iterator[LocalSyncState]:
        s = LocalSyncState(tmp_path / "state.db")
        yield s
        s.close()

    def test_get_missing(self, state: LocalSyncState) -> None:
        assert state.get_state("nothing") is None

    def test_set_and_get(self, state: LocalSyncState) -> None:
        state.set_state("k", "v")
        assert state.get_state("k") == "v"

    def test_project_change_clears_markers(self, state: LocalSyncState) -> None:
        """Switching projects should drop markers from the old project."""
        state.set_project_id("p1")
        state.mark_synced("/a.tex", "h")

        state.set_project_id("p1")
        assert state.list_paths() == ["/a.tex"]

        state.set_project_id("p2")
        assert state.list_paths() == []
        assert state.get_project_id() == "p2"
