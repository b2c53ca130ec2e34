"""Command-line interface for leafsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- link: Link a folder to a project
- unlink: Remove the link and local sync state
- pull: Reconcile the folder with the project once
- sync: Pull, then optionally watch and sync continuously
- status: Show the link and sync state of a folder
- ignore-init: Create a default .leafignore
"""

from __future__ import annotations

import click

from leafsync.client.cli.config import (
    configure_logging,
    get_project_folder,
    require_identity,
    require_linked,
)
from leafsync.client.cli.ignore import ignore_init
from leafsync.client.cli.link import link, unlink
from leafsync.client.cli.pull import pull
from leafsync.client.cli.status import status
from leafsync.client.cli.sync import sync


@click.group()
@click.version_option(package_name="leafsync")
def cli() -> None:
    """leafsync - Two-way sync between a local folder and an Overleaf project."""


# Project commands
cli.add_command(link)
cli.add_command(unlink)
cli.add_command(status)
cli.add_command(ignore_init)

# Sync commands
cli.add_command(pull)
cli.add_command(sync)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "configure_logging",
    "get_project_folder",
    "main",
    "require_identity",
    "require_linked",
]
