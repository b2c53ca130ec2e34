"""Sync command for the leafsync CLI.

Commands:
- sync: Pull the project, then optionally keep the folder in sync
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

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
from leafsync.client.status import StatusEvent

if TYPE_CHECKING:
    from leafsync.client.protocol import OnlineUser
    from leafsync.client.sync import SyncEngine

RECONNECT_INTERVAL = 5.0


class StatusLineAwareHandler(logging.Handler):
    """Logging handler that coordinates with the status line display.

    Clears the status line before printing log messages and restores it after.
    """

    def __init__(
        self,
        clear_func: Callable[[], None],
        update_func: Callable[[], None],
        lock: threading.Lock,
    ) -> None:
        super().__init__()
        self._clear_func = clear_func
        self._update_func = update_func
        self._lock = lock

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            with self._lock:
                self._clear_func()
                # Same stream as the status line to prevent interleaving
                sys.stdout.write(msg + "\n")
                sys.stdout.flush()
                self._update_func()
        except Exception:
            self.handleError(record)


class StatusLine:
    """Single terminal line showing the latest sync status."""

    def __init__(self, enabled: bool = True, width: int = 80) -> None:
        self.enabled = enabled
        self.lock = threading.Lock()
        self._width = width
        self._text = ""
        self._last_len = 0

    def clear(self) -> None:
        if self._last_len > 0 and self.enabled:
            sys.stdout.write("\r" + " " * self._last_len + "\r")
            sys.stdout.flush()
            self._last_len = 0

    def update(self) -> None:
        if not self.enabled or not self._text:
            return
        text = self._text
        if len(text) > self._width - 3:
            text = text[: self._width - 6] + "..."
        padding = " " * max(0, self._last_len - len(text))
        sys.stdout.write(f"\r{text}{padding}")
        sys.stdout.flush()
        self._last_len = len(text)

    def on_status(self, event: StatusEvent) -> None:
        with self.lock:
            self._text = f"  [{event.status.value}] {event.message or ''}"
            self.update()

    def install_log_handler(self) -> None:
        """Route leafsync warnings through the status line."""
        handler = StatusLineAwareHandler(self.clear, self.update, self.lock)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.setLevel(logging.WARNING)

        leafsync_logger = logging.getLogger("leafsync")
        for existing in leafsync_logger.handlers[:]:
            leafsync_logger.removeHandler(existing)
        leafsync_logger.addHandler(handler)
        leafsync_logger.propagate = False


def format_collaborators(engine: SyncEngine, users: list[OnlineUser]) -> str:
    """One line naming each online collaborator and the file they are in."""
    if not users:
        return "No collaborators online"
    names = []
    for user in users:
        label = user.name or user.email or user.user_id
        entry = engine.index.lookup_by_id(user.doc_id) if user.doc_id else None
        names.append(f"{label} ({entry.path.lstrip('/')})" if entry else label)
    return "Online: " + ", ".join(names)


async def show_collaborators(engine: SyncEngine) -> None:
    """Print who else is connected to the project."""
    from leafsync.client.transport import LeafConnectionError

    if engine.connection is None or not engine.is_live:
        return
    try:
        users = await engine.collaborators.refresh(engine.connection)
    except LeafConnectionError as e:
        logging.getLogger("leafsync.client.cli.sync").warning(
            "Could not list collaborators: %s", e
        )
        return
    click.echo(format_collaborators(engine, users))


async def keep_alive(engine: SyncEngine, interval: float = RECONNECT_INTERVAL) -> None:
    """Run until cancelled, re-establishing a dropped real-time session."""
    from leafsync.client.api import APIError, AuthenticationError
    from leafsync.client.transport import LeafConnectionError

    log = logging.getLogger("leafsync.client.cli.sync")
    while True:
        await asyncio.sleep(interval)
        if engine.connection is None or engine.is_live:
            continue
        try:
            await engine.reconnect()
            await engine.watch_all_docs()
            log.info("Reconnected to project")
        except AuthenticationError:
            raise
        except (LeafConnectionError, APIError, OSError) as e:
            log.warning("Reconnect failed: %s", e)


@click.command()
@folder_option
@identity_options
@click.option("--watch", "-w", is_flag=True, help="Watch for changes and sync continuously.")
@click.option(
    "--prefer",
    type=click.Choice(PREFER_CHOICES),
    default="ask",
    show_default=True,
    help="How to resolve conflicts without asking.",
)
@click.option("--http-only", is_flag=True, help="Do not open a real-time connection.")
@click.option("--no-progress", is_flag=True, help="Disable the status line.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def sync(
    folder: Path | None,
    cookies: str,
    csrf_token: str,
    watch: bool,
    prefer: str,
    http_only: bool,
    no_progress: bool,
    verbose: bool,
) -> None:
    """Synchronize the folder with its project.

    Pulls the project first. Use --watch to keep pushing local edits and
    applying remote ones until interrupted.
    """
    from leafsync.client.api import APIError
    from leafsync.client.cli.session import display_result, engine_session, make_prompter
    from leafsync.client.sync import SyncError

    configure_logging(verbose)
    manager = require_linked(get_project_folder(folder))
    identity = require_identity(cookies, csrf_token)
    status_line = StatusLine(enabled=watch and not no_progress)

    async def run() -> None:
        async with engine_session(
            manager, identity, make_prompter(prefer), use_socket=not http_only
        ) as engine:
            display_result(await engine.pull_all())
            if not watch:
                return

            joined = await engine.watch_all_docs()
            engine.start_watching()
            if status_line.enabled:
                status_line.install_log_handler()
            unsubscribe = engine.status.subscribe(status_line.on_status)
            mode = f"{joined} documents live" if engine.is_live else "HTTP only"
            await show_collaborators(engine)
            click.echo(f"\nWatching for changes ({mode})... (Ctrl+C to stop)\n")
            try:
                await keep_alive(engine)
            finally:
                unsubscribe()
                with status_line.lock:
                    status_line.clear()

    click.echo(f"Syncing {manager.folder}...")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    except (APIError, SyncError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
