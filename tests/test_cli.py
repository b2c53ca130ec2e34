"""Tests for CLI commands - link, unlink, status, ignore-init, pull, sync."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from leafsync.client.api import APIError, OverleafHTTPClient, ProjectDetails
from leafsync.client.cli import cli
from leafsync.client.cli.prompts import ClickConflictPrompter
from leafsync.client.cli.session import make_prompter
from leafsync.client.cli.sync import format_collaborators, keep_alive, show_collaborators
from leafsync.client.protocol import OnlineUser
from leafsync.client.settings import SettingsManager
from leafsync.client.sync import AutoPrompter, PullResult, SyncError

NO_COOKIES = {"LEAFSYNC_COOKIES": "", "LEAFSYNC_CSRF_TOKEN": ""}
COOKIES = {"LEAFSYNC_COOKIES": "overleaf_session2=abc", "LEAFSYNC_CSRF_TOKEN": "tok"}


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def linked(tmp_path: Path) -> Path:
    """A folder linked to project p1."""
    SettingsManager(tmp_path).save(SettingsManager.create_default("p1", "Thesis"))
    return tmp_path


def fake_session(engine: MagicMock) -> Any:
    """Replacement for engine_session yielding a prepared engine."""

    @asynccontextmanager
    async def session(*args: Any, **kwargs: Any) -> AsyncIterator[MagicMock]:
        yield engine

    return session


class TestLinkCommand:
    """Tests for 'leafsync link' command."""

    def test_link_with_name(self, runner: CliRunner, tmp_path: Path) -> None:
        """Link should not contact the server when the name is given."""
        folder = tmp_path / "thesis"
        result = runner.invoke(
            cli, ["link", "p1", "--folder", str(folder), "--name", "Thesis"], env=NO_COOKIES
        )

        assert result.exit_code == 0, result.output
        assert "Linked" in result.output
        data = json.loads((folder / ".leafsync" / "settings.json").read_text())
        assert data["projectId"] == "p1"
        assert data["projectName"] == "Thesis"
        assert data["serverUrl"] == "https://www.overleaf.com"

    def test_link_fetches_name(self, runner: CliRunner, tmp_path: Path) -> None:
        details = ProjectDetails(project_id="p1", name="Fetched")
        with patch.object(
            OverleafHTTPClient, "get_project_details", AsyncMock(return_value=details)
        ):
            result = runner.invoke(
                cli,
                ["link", "p1", "--folder", str(tmp_path), "--server", "https://latex.example.com/"],
                env=COOKIES,
            )

        assert result.exit_code == 0, result.output
        settings = SettingsManager(tmp_path).load()
        assert settings is not None
        assert settings.project_name == "Fetched"
        assert settings.server_url == "https://latex.example.com"

    def test_link_inaccessible_project(self, runner: CliRunner, tmp_path: Path) -> None:
        with patch.object(
            OverleafHTTPClient,
            "get_project_details",
            AsyncMock(side_effect=APIError("Forbidden", status_code=403)),
        ):
            result = runner.invoke(cli, ["link", "p1", "--folder", str(tmp_path)], env=COOKIES)

        assert result.exit_code == 1
        assert "Could not access project" in result.output
        assert not SettingsManager(tmp_path).is_linked()

    def test_relink_declined(self, runner: CliRunner, linked: Path) -> None:
        result = runner.invoke(
            cli, ["link", "p2", "--folder", str(linked), "--name", "Other"], input="n\n", env=NO_COOKIES
        )

        assert result.exit_code == 0
        assert SettingsManager(linked).load().project_id == "p1"  # type: ignore[union-attr]

    def test_relink_same_project_keeps_main_document(self, runner: CliRunner, linked: Path) -> None:
        SettingsManager(linked).update(main_tex="thesis.tex", main_pdf="thesis.pdf")

        result = runner.invoke(
            cli, ["link", "p1", "--folder", str(linked), "--name", "Thesis"], env=NO_COOKIES
        )

        assert result.exit_code == 0
        assert SettingsManager(linked).load().main_tex == "thesis.tex"  # type: ignore[union-attr]


class TestUnlinkCommand:
    """Tests for 'leafsync unlink' command."""

    def test_unlink(self, runner: CliRunner, linked: Path) -> None:
        result = runner.invoke(cli, ["unlink", "--folder", str(linked), "--yes"])

        assert result.exit_code == 0
        assert not (linked / ".leafsync").exists()

    def test_unlink_not_linked(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["unlink", "--folder", str(tmp_path), "--yes"])

        assert result.exit_code == 1
        assert "not linked" in result.output


class TestStatusCommand:
    """Tests for 'leafsync status' command."""

    def test_status(self, runner: CliRunner, linked: Path) -> None:
        result = runner.invoke(cli, ["status", "--folder", str(linked)])

        assert result.exit_code == 0, result.output
        assert "Thesis (p1)" in result.output
        assert "Last synced:   never" in result.output
        assert "Synced files:  0" in result.output
        assert "(defaults)" in result.output

    def test_status_not_linked(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["status", "--folder", str(tmp_path)])

        assert result.exit_code == 1
        assert "leafsync link" in result.output


class TestIgnoreInitCommand:
    """Tests for 'leafsync ignore-init' command."""

    def test_creates_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["ignore-init", "--folder", str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / ".leafignore").exists()
        assert "$MAIN_PDF" in (tmp_path / ".leafignore").read_text()

    def test_existing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        (tmp_path / ".leafignore").write_text("custom\n")

        result = runner.invoke(cli, ["ignore-init", "--folder", str(tmp_path)])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert (tmp_path / ".leafignore").read_text() == "custom\n"


class TestPullCommand:
    """Tests for 'leafsync pull' command."""

    def test_pull_not_linked(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["pull", "--folder", str(tmp_path)], env=COOKIES)

        assert result.exit_code == 1
        assert "not linked" in result.output

    def test_pull_without_cookies(self, runner: CliRunner, linked: Path) -> None:
        result = runner.invoke(cli, ["pull", "--folder", str(linked)], env=NO_COOKIES)

        assert result.exit_code == 1
        assert "No session cookies" in result.output

    def test_pull_displays_result(self, runner: CliRunner, linked: Path) -> None:
        engine = MagicMock()
        engine.pull_all = AsyncMock(
            return_value=PullResult(downloaded=2, local_only=["/notes.tex"], remote_deleted=["/draft.tex"])
        )
        with patch("leafsync.client.cli.session.engine_session", fake_session(engine)):
            result = runner.invoke(
                cli, ["pull", "--folder", str(linked), "--prefer", "skip"], env=COOKIES
            )

        assert result.exit_code == 0, result.output
        assert "Pull complete: 2 downloaded, 0 skipped, 0 conflicts" in result.output
        assert "+ /notes.tex" in result.output
        assert "- /draft.tex" in result.output

    def test_pull_error(self, runner: CliRunner, linked: Path) -> None:
        engine = MagicMock()
        engine.pull_all = AsyncMock(side_effect=SyncError("broken"))
        with patch("leafsync.client.cli.session.engine_session", fake_session(engine)):
            result = runner.invoke(cli, ["pull", "--folder", str(linked)], env=COOKIES)

        assert result.exit_code == 1
        assert "Error: broken" in result.output


class TestSyncCommand:
    """Tests for 'leafsync sync' command."""

    def test_sync_once(self, runner: CliRunner, linked: Path) -> None:
        """Without --watch, sync pulls once and exits."""
        engine = MagicMock()
        engine.pull_all = AsyncMock(return_value=PullResult(downloaded=1))
        with patch("leafsync.client.cli.session.engine_session", fake_session(engine)):
            result = runner.invoke(
                cli, ["sync", "--folder", str(linked), "--prefer", "remote"], env=COOKIES
            )

        assert result.exit_code == 0, result.output
        assert "1 downloaded" in result.output
        engine.start_watching.assert_not_called()


class TestHelpers:
    """Tests for CLI helpers."""

    def test_make_prompter(self) -> None:
        assert isinstance(make_prompter("ask"), ClickConflictPrompter)
        assert isinstance(make_prompter("local"), AutoPrompter)

    @pytest.mark.asyncio
    async def test_keep_alive_reconnects(self) -> None:
        engine = MagicMock()
        engine.connection = MagicMock()
        engine.is_live = False
        engine.reconnect = AsyncMock()
        engine.watch_all_docs = AsyncMock(return_value=1)

        task = asyncio.create_task(keep_alive(engine, interval=0.001))
        for _ in range(100):
            if engine.reconnect.await_count:
                break
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.reconnect.await_count >= 1
        engine.watch_all_docs.assert_awaited()

    @pytest.mark.asyncio
    async def test_show_collaborators(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Online collaborators are listed with the file they have open."""
        alice = OnlineUser(client_id="c1", user_id="u1", name="Alice", email="", doc_id="d1")
        bob = OnlineUser(client_id="c2", user_id="u2", name="", email="bob@example.com")
        engine = MagicMock()
        engine.is_live = True
        engine.collaborators.refresh = AsyncMock(return_value=[alice, bob])
        engine.index.lookup_by_id.return_value = MagicMock(path="/chapters/intro.tex")

        await show_collaborators(engine)

        engine.collaborators.refresh.assert_awaited_once_with(engine.connection)
        assert capsys.readouterr().out == "Online: Alice (chapters/intro.tex), bob@example.com\n"

    def test_format_without_collaborators(self) -> None:
        assert format_collaborators(MagicMock(), []) == "No collaborators online"

    @pytest.mark.asyncio
    async def test_show_collaborators_http_only(self) -> None:
        engine = MagicMock()
        engine.is_live = False
        engine.collaborators.refresh = AsyncMock()

        await show_collaborators(engine)

        engine.collaborators.refresh.assert_not_awaited()
