"""Configuration utilities for the leafsync CLI.

This module provides shared helpers used across CLI commands.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from leafsync.client.settings import SettingsManager
from leafsync.core.config import Identity, ServerConfig

F = TypeVar("F", bound=Callable[..., Any])

COOKIES_ENV = "LEAFSYNC_COOKIES"
CSRF_TOKEN_ENV = "LEAFSYNC_CSRF_TOKEN"


def folder_option(func: F) -> F:
    """Add the --folder option (defaults to the current directory)."""
    return click.option(
        "--folder",
        "-f",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Project folder (default: current directory).",
    )(func)


def identity_options(func: F) -> F:
    """Add --cookies and --csrf-token, read from the environment by default."""
    func = click.option(
        "--csrf-token",
        envvar=CSRF_TOKEN_ENV,
        default="",
        help=f"CSRF token for mutating requests (env: {CSRF_TOKEN_ENV}).",
    )(func)
    return click.option(
        "--cookies",
        envvar=COOKIES_ENV,
        default="",
        help=f"Session Cookie header value (env: {COOKIES_ENV}).",
    )(func)


def get_project_folder(folder: Path | None) -> Path:
    """Resolve the project folder."""
    return (folder or Path.cwd()).expanduser().resolve()


def require_linked(folder: Path) -> SettingsManager:
    """Load the folder's settings, exiting if it is not linked."""
    manager = SettingsManager(folder)
    if manager.load() is None:
        click.echo(
            f"Error: {folder} is not linked to a project. Run 'leafsync link' first.",
            err=True,
        )
        sys.exit(1)
    return manager


def require_identity(cookies: str, csrf_token: str) -> Identity:
    """Build the session identity, exiting if no cookies were given."""
    identity = Identity(cookies=cookies, csrf_token=csrf_token)
    if not identity.is_valid:
        click.echo(
            f"Error: No session cookies. Pass --cookies or set {COOKIES_ENV}.",
            err=True,
        )
        sys.exit(1)
    return identity


def server_config_for(manager: SettingsManager) -> ServerConfig:
    return ServerConfig(server_url=manager.require().server_url)


def configure_logging(verbose: bool) -> None:
    """Send leafsync logs to stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("leafsync").setLevel(level)
