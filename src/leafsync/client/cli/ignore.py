"""Ignore file command for the leafsync CLI.

Commands:
- ignore-init: Create a default .leafignore
"""

from __future__ import annotations

from pathlib import Path

import click

from leafsync.client.cli.config import folder_option, get_project_folder
from leafsync.core.config import IGNORE_FILE


@click.command("ignore-init")
@folder_option
def ignore_init(folder: Path | None) -> None:
    """Create a .leafignore file with the default patterns."""
    from leafsync.client.sync.ignore import write_default_ignore_file

    project_folder = get_project_folder(folder)
    if (project_folder / IGNORE_FILE).exists():
        click.echo(f"{IGNORE_FILE} already exists in {project_folder}")
        return
    path = write_default_ignore_file(project_folder)
    click.echo(f"Created {path}")
