"""Types shared by the sync pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field


class SyncError(Exception):
    """Base exception for sync failures."""


class OTApplyError(SyncError):
    """An OT component does not fit the document it is applied to."""


class ReconcileError(SyncError):
    """Reconciliation could not run."""


@dataclass
class PullResult:
    """Outcome of a reconciliation pass.

    Attributes:
        downloaded: Files written locally from remote content.
        skipped: Conflicts the user chose to leave untouched.
        conflicts: Files whose local and remote content differed.
        uploaded: Files pushed because local content was kept.
        failed: Paths whose remote content could not be fetched.
        remote_deleted: Previously-synced paths missing remotely.
        local_only: Local paths never synced and missing remotely.
    """

    downloaded: int = 0
    skipped: int = 0
    conflicts: int = 0
    uploaded: int = 0
    failed: list[str] = field(default_factory=list)
    remote_deleted: list[str] = field(default_factory=list)
    local_only: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return (
            f"Pull complete: {self.downloaded} downloaded, "
            f"{self.skipped} skipped, {self.conflicts} conflicts"
        )
