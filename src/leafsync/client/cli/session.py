"""Engine setup shared by the pull and sync commands."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click

from leafsync.client.api import OverleafHTTPClient
from leafsync.client.cli.config import server_config_for
from leafsync.client.cli.prompts import ClickConflictPrompter
from leafsync.client.settings import SettingsManager
from leafsync.client.state import LocalSyncState
from leafsync.client.sync import AutoPrompter, ConflictChoice, ConflictPrompter, PullResult, SyncEngine
from leafsync.core.config import Identity

PREFER_CHOICES = ["ask", "remote", "local", "skip"]

_PREFERENCES = {
    "remote": ConflictChoice.USE_REMOTE,
    "local": ConflictChoice.USE_LOCAL,
    "skip": ConflictChoice.SKIP,
}


def make_prompter(prefer: str) -> ConflictPrompter:
    """Interactive prompter, or a fixed answer for every conflict."""
    if prefer == "ask":
        return ClickConflictPrompter()
    return AutoPrompter(conflict=_PREFERENCES[prefer])


@asynccontextmanager
async def engine_session(
    manager: SettingsManager,
    identity: Identity,
    prompter: ConflictPrompter,
    use_socket: bool = True,
) -> AsyncIterator[SyncEngine]:
    """Connected engine for a linked folder, disconnected on exit."""
    settings = manager.require()
    config = server_config_for(manager)

    with LocalSyncState(manager.state_file) as state:
        state.set_project_id(settings.project_id)
        async with OverleafHTTPClient(config, identity) as http:
            engine = SyncEngine(
                manager.folder, manager, http, config, identity, prompter=prompter, state=state
            )
            try:
                await engine.connect(use_socket=use_socket)
                yield engine
            finally:
                await engine.disconnect()


def display_result(result: PullResult) -> None:
    """Print the outcome of a pull."""
    for path in result.failed:
        click.echo(click.style(f"  ✗ {path} (could not fetch)", fg="red"))
    if result.remote_deleted:
        click.echo(click.style("\nDeleted remotely:", fg="yellow"))
        for path in result.remote_deleted:
            click.echo(f"  - {path}")
    if result.local_only:
        click.echo(click.style("\nOnly in local folder:", fg="yellow"))
        for path in result.local_only:
            click.echo(f"  + {path}")
    click.echo(result.summary)
