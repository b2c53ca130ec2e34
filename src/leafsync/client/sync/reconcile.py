"""Full reconciliation of the local folder with the project (pull-all).

The pass walks every indexed entity, downloads missing files, surfaces
conflicts to the ConflictResolver and finally classifies files that
exist on one side only:

- remote-deleted: synced before, no longer in the project
- local-only: never synced and not in the project
"""

from __future__ import annotations

import logging

from leafsync.client.settings import SettingsManager
from leafsync.client.sync.conflict import (
    ConflictChoice,
    ConflictResolver,
    LocalOnlyChoice,
    RemoteDeletedChoice,
)
from leafsync.client.sync.context import SyncContext
from leafsync.client.sync.tree import EntityEntry
from leafsync.client.sync.types import PullResult, ReconcileError
from leafsync.core.types import SyncStatus

logger = logging.getLogger(__name__)


class Reconciler:
    """Runs pull-all passes."""

    def __init__(
        self,
        ctx: SyncContext,
        resolver: ConflictResolver,
        settings: SettingsManager | None = None,
    ) -> None:
        self._ctx = ctx
        self._resolver = resolver
        self._settings = settings

    async def pull_all(self) -> PullResult:
        """Reconcile every entity of the project with the local folder.

        Raises:
            ReconcileError: If the project tree has not been loaded.
            Exception: Whatever else aborted the pass; status is set to error first.
        """
        ctx = self._ctx
        self._resolver.reset()
        result = PullResult()
        ctx.status.set(SyncStatus.PULLING, "Pulling project...")

        try:
            if ctx.index.root_id is None:
                # Every local file would look local-only
                raise ReconcileError("Project tree is not loaded; connect first")
            for entry in ctx.index.entries():
                await self._pull_entry(entry, result)
            await self._handle_remote_deleted(result)
            await self._handle_local_only(result)
        except Exception as e:
            logger.error("Pull failed: %s", e)
            ctx.status.set(SyncStatus.ERROR, f"Pull failed: {e}")
            raise

        if self._settings is not None and self._settings.is_linked():
            self._settings.update_last_synced()
        logger.info(result.summary)
        ctx.status.set(SyncStatus.IDLE, result.summary)
        return result

    async def _pull_entry(self, entry: EntityEntry, result: PullResult) -> None:
        ctx = self._ctx
        path = entry.path
        if entry.id == ctx.index.root_id or ctx.ignore.should_ignore(path):
            return
        if entry.is_folder:
            await ctx.fs.create_directory(path)
            return

        try:
            remote = await ctx.fetch_remote(entry)
        except Exception as e:
            logger.warning("Could not fetch %s: %s", path, e)
            result.failed.append(path)
            return

        try:
            local: bytes | None = await ctx.fs.read(path)
        except FileNotFoundError:
            local = None

        if local is None:
            await self._download(path, remote)
            result.downloaded += 1
            return
        if local == remote:
            ctx.record_synced(path, local)
            return

        result.conflicts += 1
        choice = await self._resolver.resolve(path, local, remote)
        if choice == ConflictChoice.SKIP:
            logger.info("Skipped conflict on %s", path)
            result.skipped += 1
        elif choice == ConflictChoice.USE_LOCAL:
            await ctx.push(entry, local)
            ctx.record_synced(path, local)
            result.uploaded += 1
        else:
            await self._download(path, remote)
            result.downloaded += 1

    async def _download(self, path: str, content: bytes) -> None:
        ctx = self._ctx
        ctx.change_cache.record(path, content)
        await ctx.fs.write(path, content)
        ctx.base_content.set(path, content)
        logger.debug("Downloaded %s", path)

    async def _handle_remote_deleted(self, result: PullResult) -> None:
        ctx = self._ctx
        for path in sorted(ctx.base_content.synced_paths()):
            if path.endswith("/") or ctx.index.lookup_by_path(path) is not None:
                continue
            if ctx.ignore.should_ignore(path):
                continue
            try:
                content = await ctx.fs.read(path)
            except FileNotFoundError:
                ctx.base_content.discard(path)
                continue

            result.remote_deleted.append(path)
            choice = await self._resolver.resolve_remote_deleted(path)
            if choice == RemoteDeletedChoice.DELETE_LOCAL:
                await ctx.fs.delete(path, recursive=False)
                ctx.forget(path)
                logger.info("Deleted %s locally", path)
            elif choice == RemoteDeletedChoice.REUPLOAD:
                if await ctx.create_remote(path, content, is_dir=False) is not None:
                    ctx.record_synced(path, content)
                    result.uploaded += 1
            else:
                ctx.base_content.set(path, content)

    async def _handle_local_only(self, result: PullResult) -> None:
        ctx = self._ctx
        for path in await ctx.fs.walk_files():
            if ctx.ignore.should_ignore(path) or ctx.index.lookup_by_path(path) is not None:
                continue
            if ctx.base_content.previously_synced(path):
                continue

            result.local_only.append(path)
            choice = await self._resolver.resolve_local_only(path)
            if choice != LocalOnlyChoice.UPLOAD:
                continue
            content = await ctx.fs.read(path)
            if await ctx.create_remote(path, content, is_dir=False) is not None:
                ctx.record_synced(path, content)
                result.uploaded += 1
