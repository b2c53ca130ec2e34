"""Status command for the leafsync CLI.

Commands:
- status: Show the link and sync state of a folder
"""

from __future__ import annotations

from pathlib import Path

import click

from leafsync.client.cli.config import folder_option, get_project_folder, require_linked


@click.command()
@folder_option
def status(folder: Path | None) -> None:
    """Show the project a folder is linked to and its sync state."""
    from leafsync.client.state import LocalSyncState
    from leafsync.client.sync import IgnorePatterns

    manager = require_linked(get_project_folder(folder))
    settings = manager.require()

    click.echo(f"Folder:        {manager.folder}")
    click.echo(f"Project:       {settings.project_name or '(unnamed)'} ({settings.project_id})")
    click.echo(f"Server:        {settings.server_url}")
    click.echo(f"Main document: {settings.main_tex} -> {settings.main_pdf}")
    click.echo(f"Last synced:   {settings.last_synced or 'never'}")

    tracked = 0
    if manager.state_file.exists():
        with LocalSyncState(manager.state_file) as state:
            tracked = len(state.list_paths())
    click.echo(f"Synced files:  {tracked}")

    ignore = IgnorePatterns(main_tex=settings.main_tex, main_pdf=settings.main_pdf)
    source = ".leafignore" if ignore.load(manager.folder) else "defaults"
    click.echo(f"Ignore rules:  {len(ignore.patterns)} ({source})")
