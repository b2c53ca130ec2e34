"""Propagation of local filesystem changes to the project.

Each handler runs as its own task. A path is processed by one handler at
a time; an event for a path that is already locked is dropped. Failures
are logged and reported through the status emitter, never raised.
"""

from __future__ import annotations

import logging
import stat

from leafsync.client.api import NotFoundError
from leafsync.client.sync.context import SyncContext
from leafsync.core.types import SyncStatus

logger = logging.getLogger(__name__)


class LocalChangeHandler:
    """Pushes local create, modify and delete events."""

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx

    def _should_skip(self, path: str) -> bool:
        if self._ctx.ignore.should_ignore(path):
            logger.debug("Ignoring local change to %s", path)
            return True
        if not self._ctx.locks.acquire(path):
            logger.debug("%s is busy, dropping local event", path)
            return True
        return False

    async def _folder_aware(self, path: str) -> str:
        """Trailing-slash form of path when it names a folder."""
        if path.endswith("/"):
            return path
        folder = path + "/"
        if self._ctx.index.lookup_by_path(folder) is not None or await self._ctx.fs.is_dir(path):
            return folder
        return path

    def _fail(self, action: str, path: str, error: Exception) -> None:
        logger.error("Failed to %s %s: %s", action, path, error)
        self._ctx.status.set(SyncStatus.ERROR, f"Failed to {action}: {error}", path)

    async def on_modified(self, path: str) -> None:
        """Push the new content of a modified file."""
        ctx = self._ctx
        if self._should_skip(path):
            return
        try:
            try:
                content = await ctx.fs.read(path)
            except (FileNotFoundError, IsADirectoryError):
                logger.debug("%s vanished before it could be read", path)
                return

            if not ctx.change_cache.should_propagate(path, content):
                logger.debug("Suppressed echo for %s", path)
                return

            entry = ctx.index.lookup_by_path(path)
            if entry is None:
                logger.warning("No project entity for %s", path)
                ctx.status.set(SyncStatus.ERROR, "File is not part of the project", path)
                return

            ctx.status.set(SyncStatus.PUSHING, f"Pushing {path}", path)
            await ctx.push(entry, content)
            ctx.record_synced(path, content)
            ctx.status.set(SyncStatus.IDLE, f"Pushed {path}", path)
        except Exception as e:
            self._fail("push", path, e)
        finally:
            ctx.locks.release(path)

    async def on_created(self, path: str) -> None:
        """Create the remote counterpart of a new file or directory."""
        ctx = self._ctx
        path = await self._folder_aware(path)
        if self._should_skip(path):
            return
        try:
            try:
                info = await ctx.fs.stat(path)
            except FileNotFoundError:
                logger.debug("%s vanished before it could be created", path)
                return

            if stat.S_ISDIR(info.st_mode):
                if ctx.index.lookup_by_path(path) is not None:
                    return
                ctx.status.set(SyncStatus.PUSHING, f"Creating {path}", path)
                await ctx.create_remote(path, b"", is_dir=True)
                ctx.status.set(SyncStatus.IDLE, f"Created {path}", path)
                return

            try:
                content = await ctx.fs.read(path)
            except FileNotFoundError:
                logger.debug("%s vanished before it could be read", path)
                return

            entry = ctx.index.lookup_by_path(path)
            if entry is not None:
                # Already known remotely (written by a remote change or a pull)
                if ctx.change_cache.should_propagate(path, content):
                    ctx.status.set(SyncStatus.PUSHING, f"Pushing {path}", path)
                    await ctx.push(entry, content)
                    ctx.record_synced(path, content)
                    ctx.status.set(SyncStatus.IDLE, f"Pushed {path}", path)
                return

            ctx.change_cache.record(path, content)
            ctx.status.set(SyncStatus.PUSHING, f"Creating {path}", path)
            created = await ctx.create_remote(path, content, is_dir=False)
            if created is None:
                ctx.status.set(SyncStatus.ERROR, "Server did not create the file", path)
                return
            ctx.record_synced(path, content)
            ctx.status.set(SyncStatus.IDLE, f"Created {path}", path)
        except Exception as e:
            self._fail("create", path, e)
        finally:
            ctx.locks.release(path)

    async def on_deleted(self, path: str) -> None:
        """Delete the remote counterpart of a removed file or directory."""
        ctx = self._ctx
        path = await self._folder_aware(path)
        if self._should_skip(path):
            return
        try:
            entry = ctx.index.lookup_by_path(path)
            if entry is None or entry.id == ctx.index.root_id:
                logger.debug("No project entity for deleted %s", path)
                return

            ctx.status.set(SyncStatus.PUSHING, f"Deleting {entry.path}", entry.path)
            try:
                await ctx.http.delete_entity(ctx.project_id, entry.kind, entry.id)
            except NotFoundError:
                logger.debug("%s was already deleted remotely", entry.path)

            for removed in ctx.index.remove(entry.id):
                if removed.is_doc:
                    await ctx.leave(removed.id)
                ctx.forget(removed.path)
            ctx.status.set(SyncStatus.IDLE, f"Deleted {entry.path}", entry.path)
        except Exception as e:
            self._fail("delete", path, e)
        finally:
            ctx.locks.release(path)
