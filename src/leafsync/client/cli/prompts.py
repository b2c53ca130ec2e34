"""Terminal implementation of the conflict prompts."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TypeVar

import click

from leafsync.client.sync.conflict import (
    ConflictChoice,
    LocalOnlyChoice,
    PromptChoice,
    RemoteDeletedChoice,
    unified_diff,
)

E = TypeVar("E", bound=Enum)

_CONFLICT_OPTIONS = {
    "d": PromptChoice.DIFF,
    "r": PromptChoice.REMOTE,
    "l": PromptChoice.LOCAL,
    "R": PromptChoice.ALL_REMOTE,
    "L": PromptChoice.ALL_LOCAL,
    "s": None,
}

_AFTER_DIFF_OPTIONS = {
    "r": ConflictChoice.USE_REMOTE,
    "l": ConflictChoice.USE_LOCAL,
    "s": ConflictChoice.SKIP,
}

_REMOTE_DELETED_OPTIONS = {
    "d": RemoteDeletedChoice.DELETE_LOCAL,
    "k": RemoteDeletedChoice.KEEP,
    "u": RemoteDeletedChoice.REUPLOAD,
}

_LOCAL_ONLY_OPTIONS = {
    "u": LocalOnlyChoice.UPLOAD,
    "i": LocalOnlyChoice.IGNORE,
}


def _ask(question: str, legend: str, options: dict[str, E | None]) -> E | None:
    click.echo(question)
    click.echo(f"  {legend}")
    key = click.prompt(
        "Choice",
        type=click.Choice(list(options), case_sensitive=True),
        show_choices=True,
    )
    return options[key]


class ClickConflictPrompter:
    """Asks conflict questions on the terminal.

    click.prompt blocks, so every question runs in a worker thread.
    """

    async def choose(self, path: str) -> PromptChoice | None:
        return await asyncio.to_thread(
            _ask,
            f'Conflict: "{path}" differs locally and remotely.',
            "[d]iff, use [r]emote, keep [l]ocal, all [R]emote, all [L]ocal, [s]kip",
            _CONFLICT_OPTIONS,
        )

    async def show_diff(self, path: str, local: bytes, remote: bytes) -> None:
        text = unified_diff(path, local, remote) or "(no textual difference)\n"
        await asyncio.to_thread(click.echo_via_pager, text)

    async def choose_after_diff(self, path: str) -> ConflictChoice | None:
        return await asyncio.to_thread(
            _ask,
            f'After reviewing diff for "{path}", what would you like to do?',
            "use [r]emote, keep [l]ocal, [s]kip",
            _AFTER_DIFF_OPTIONS,
        )

    async def choose_remote_deleted(self, path: str) -> RemoteDeletedChoice | None:
        return await asyncio.to_thread(
            _ask,
            f'"{path}" was deleted from the project.',
            "[d]elete local copy, [k]eep local copy, re-[u]pload",
            _REMOTE_DELETED_OPTIONS,
        )

    async def choose_local_only(self, path: str) -> LocalOnlyChoice | None:
        return await asyncio.to_thread(
            _ask,
            f'"{path}" exists only locally.',
            "[u]pload, [i]gnore",
            _LOCAL_ONLY_OPTIONS,
        )
