"""Conflict resolution for reconciliation passes.

This module provides:
- ConflictResolver: Sticky per-pass resolution of content conflicts
- ConflictPrompter: Interface the user-facing layer implements
- AutoPrompter: Non-interactive prompter answering with fixed choices
- unified_diff: Text diff of local against remote content

A prompt returning None means the user dismissed it, which counts as
skip.
"""

from __future__ import annotations

import difflib
import logging
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class ConflictChoice(str, Enum):
    """Resolution of a single conflict (ASK only as sticky state)."""

    ASK = "ask"
    USE_REMOTE = "use_remote"
    USE_LOCAL = "use_local"
    SKIP = "skip"


class PromptChoice(str, Enum):
    """Options of the first conflict prompt."""

    DIFF = "diff"
    REMOTE = "remote"
    LOCAL = "local"
    ALL_REMOTE = "all_remote"
    ALL_LOCAL = "all_local"


class RemoteDeletedChoice(str, Enum):
    """Options for a previously-synced file missing remotely."""

    DELETE_LOCAL = "delete_local"
    KEEP = "keep"
    REUPLOAD = "reupload"


class LocalOnlyChoice(str, Enum):
    """Options for a local file that was never synced."""

    UPLOAD = "upload"
    IGNORE = "ignore"


class ConflictPrompter(Protocol):
    """User-facing prompts used during reconciliation."""

    async def choose(self, path: str) -> PromptChoice | None: ...

    async def show_diff(self, path: str, local: bytes, remote: bytes) -> None: ...

    async def choose_after_diff(self, path: str) -> ConflictChoice | None: ...

    async def choose_remote_deleted(self, path: str) -> RemoteDeletedChoice | None: ...

    async def choose_local_only(self, path: str) -> LocalOnlyChoice | None: ...


class AutoPrompter:
    """Answers every prompt with a preconfigured choice."""

    def __init__(
        self,
        conflict: ConflictChoice = ConflictChoice.SKIP,
        remote_deleted: RemoteDeletedChoice | None = RemoteDeletedChoice.KEEP,
        local_only: LocalOnlyChoice | None = LocalOnlyChoice.IGNORE,
    ) -> None:
        self._conflict = conflict
        self._remote_deleted = remote_deleted
        self._local_only = local_only

    async def choose(self, path: str) -> PromptChoice | None:
        if self._conflict == ConflictChoice.USE_REMOTE:
            return PromptChoice.REMOTE
        if self._conflict == ConflictChoice.USE_LOCAL:
            return PromptChoice.LOCAL
        return None

    async def show_diff(self, path: str, local: bytes, remote: bytes) -> None:
        return None

    async def choose_after_diff(self, path: str) -> ConflictChoice | None:
        return None if self._conflict == ConflictChoice.ASK else self._conflict

    async def choose_remote_deleted(self, path: str) -> RemoteDeletedChoice | None:
        return self._remote_deleted

    async def choose_local_only(self, path: str) -> LocalOnlyChoice | None:
        return self._local_only


class ConflictResolver:
    """Resolves content conflicts, remembering "apply to all" answers.

    The sticky state is reset at the start of every reconciliation pass.
    """

    def __init__(self, prompter: ConflictPrompter) -> None:
        self._prompter = prompter
        self._choice = ConflictChoice.ASK
        self._apply_to_all = False

    @property
    def prompter(self) -> ConflictPrompter:
        return self._prompter

    @property
    def sticky_choice(self) -> ConflictChoice | None:
        if self._apply_to_all and self._choice != ConflictChoice.ASK:
            return self._choice
        return None

    def reset(self) -> None:
        self._choice = ConflictChoice.ASK
        self._apply_to_all = False

    async def resolve(self, path: str, local: bytes, remote: bytes) -> ConflictChoice:
        """Decide how to resolve a conflict on path.

        Returns:
            USE_REMOTE, USE_LOCAL or SKIP.
        """
        sticky = self.sticky_choice
        if sticky is not None:
            return sticky

        choice = await self._prompter.choose(path)
        if choice == PromptChoice.DIFF:
            await self._prompter.show_diff(path, local, remote)
            after = await self._prompter.choose_after_diff(path)
            if after in (ConflictChoice.USE_REMOTE, ConflictChoice.USE_LOCAL):
                return after
            return ConflictChoice.SKIP
        if choice == PromptChoice.REMOTE:
            return ConflictChoice.USE_REMOTE
        if choice == PromptChoice.LOCAL:
            return ConflictChoice.USE_LOCAL
        if choice == PromptChoice.ALL_REMOTE:
            self._choice, self._apply_to_all = ConflictChoice.USE_REMOTE, True
            return ConflictChoice.USE_REMOTE
        if choice == PromptChoice.ALL_LOCAL:
            self._choice, self._apply_to_all = ConflictChoice.USE_LOCAL, True
            return ConflictChoice.USE_LOCAL
        logger.debug("Conflict prompt for %s dismissed", path)
        return ConflictChoice.SKIP

    async def resolve_remote_deleted(self, path: str) -> RemoteDeletedChoice | None:
        return await self._prompter.choose_remote_deleted(path)

    async def resolve_local_only(self, path: str) -> LocalOnlyChoice | None:
        return await self._prompter.choose_local_only(path)


def unified_diff(path: str, local: bytes, remote: bytes) -> str:
    """Unified diff from local to remote content."""
    local_text = local.decode("utf-8", errors="replace").splitlines(keepends=True)
    remote_text = remote.decode("utf-8", errors="replace").splitlines(keepends=True)
    return "".join(
        difflib.unified_diff(
            local_text,
            remote_text,
            fromfile=f"{path} (local)",
            tofile=f"{path} (remote)",
        )
    )
