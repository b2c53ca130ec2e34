"""Folder linking commands for the leafsync CLI.

Commands:
- link: Link a folder to a project
- unlink: Remove the link and local sync state
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from leafsync.client.cli.config import folder_option, get_project_folder, identity_options
from leafsync.client.settings import SettingsManager
from leafsync.core.config import DEFAULT_SERVER, Identity, ServerConfig


async def _fetch_project_name(config: ServerConfig, identity: Identity, project_id: str) -> str:
    from leafsync.client.api import OverleafHTTPClient

    async with OverleafHTTPClient(config, identity) as http:
        details = await http.get_project_details(project_id)
    return details.name or ""


@click.command()
@click.argument("project_id")
@folder_option
@click.option("--server", default=DEFAULT_SERVER, show_default=True, help="Server URL.")
@click.option("--name", default=None, help="Project name (fetched from the server if omitted).")
@identity_options
def link(
    project_id: str,
    folder: Path | None,
    server: str,
    name: str | None,
    cookies: str,
    csrf_token: str,
) -> None:
    """Link a folder to the project PROJECT_ID.

    Writes .leafsync/settings.json. When session cookies are available
    the project is looked up to verify access and record its name.
    """
    from leafsync.client.api import APIError

    project_folder = get_project_folder(folder)
    project_folder.mkdir(parents=True, exist_ok=True)
    manager = SettingsManager(project_folder)

    current = manager.load()
    if current is not None and current.project_id != project_id:
        click.echo(f"Warning: Folder is linked to project {current.project_id}.", err=True)
        if not click.confirm("Do you want to link it to the new project instead?"):
            sys.exit(0)

    config = ServerConfig(server_url=server)
    identity = Identity(cookies=cookies, csrf_token=csrf_token)
    project_name = name or ""
    if not project_name and identity.is_valid:
        try:
            project_name = asyncio.run(_fetch_project_name(config, identity, project_id))
        except APIError as e:
            click.echo(f"Error: Could not access project: {e}", err=True)
            sys.exit(1)

    settings = SettingsManager.create_default(project_id, project_name, config.server_url)
    if current is not None and current.project_id == project_id:
        settings.main_tex, settings.main_pdf = current.main_tex, current.main_pdf
    manager.save(settings)

    click.echo(f"Linked {project_folder} to project {project_name or project_id}")
    click.echo("Run 'leafsync ignore-init' to create a .leafignore file.")


@click.command()
@folder_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def unlink(folder: Path | None, yes: bool) -> None:
    """Remove the project link and the local sync state."""
    manager = SettingsManager(get_project_folder(folder))
    if not manager.is_linked():
        click.echo("Error: Folder is not linked to a project.", err=True)
        sys.exit(1)
    if not yes and not click.confirm("Remove the link and sync state?"):
        sys.exit(0)
    manager.unlink()
    click.echo("Folder unlinked.")
