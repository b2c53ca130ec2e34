"""Pull command for the leafsync CLI.

Commands:
- pull: Reconcile the folder with the project once
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from leafsync.client.cli.config import (
    configure_logging,
    folder_option,
    get_project_folder,
    identity_options,
    require_identity,
    require_linked,
)
from leafsync.client.cli.session import PREFER_CHOICES


@click.command()
@folder_option
@identity_options
@click.option(
    "--prefer",
    type=click.Choice(PREFER_CHOICES),
    default="ask",
    show_default=True,
    help="How to resolve conflicts without asking.",
)
@click.option("--http-only", is_flag=True, help="Do not open a real-time connection.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def pull(
    folder: Path | None,
    cookies: str,
    csrf_token: str,
    prefer: str,
    http_only: bool,
    verbose: bool,
) -> None:
    """Download the project and resolve differences with the local folder."""
    from leafsync.client.api import APIError
    from leafsync.client.cli.session import display_result, engine_session, make_prompter
    from leafsync.client.sync import PullResult, SyncError

    configure_logging(verbose)
    manager = require_linked(get_project_folder(folder))
    identity = require_identity(cookies, csrf_token)

    async def run() -> PullResult:
        async with engine_session(
            manager, identity, make_prompter(prefer), use_socket=not http_only
        ) as engine:
            return await engine.pull_all()

    click.echo(f"Pulling into {manager.folder}...")
    try:
        result = asyncio.run(run())
    except (APIError, SyncError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    display_result(result)
