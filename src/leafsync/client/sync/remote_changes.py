"""Application of remote project events to the local folder.

Every handler locks the path the entity had before the event, so local
events caused by the resulting file writes are dropped or recognized as
echoes through the change cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from leafsync.client.protocol import (
    DocumentUpdate,
    EntityCreated,
    EntityMoved,
    EntityRemoved,
    EntityRenamed,
)
from leafsync.client.sync import ot
from leafsync.client.sync.context import SyncContext
from leafsync.client.sync.tree import ROOT_PATH, EntityEntry, child_path
from leafsync.core.types import EntityKind, SyncStatus

logger = logging.getLogger(__name__)


class RemoteChangeHandler:
    """Applies remote structural and content events."""

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx

    def _fail(self, action: str, path: str, error: Exception) -> None:
        logger.error("Failed to apply remote %s to %s: %s", action, path, error)
        self._ctx.status.set(SyncStatus.ERROR, f"Remote {action} failed: {error}", path)

    async def on_created(self, message: EntityCreated) -> None:
        ctx = self._ctx
        parent = ctx.index.lookup_by_id(message.parent_folder_id)
        path = child_path(parent.path if parent else ROOT_PATH, message.name, message.kind)

        existing = ctx.index.lookup_by_id(message.entity_id)
        if existing is not None and existing.path == path:
            logger.debug("%s already indexed", path)
            return
        if ctx.ignore.should_ignore(path):
            logger.debug("Ignoring remote create of %s", path)
            return
        if not ctx.locks.acquire(path):
            logger.debug("%s is busy, dropping remote create", path)
            return
        try:
            entry = ctx.index.insert(
                message.entity_id, message.kind, message.name, message.parent_folder_id
            )
            if entry.is_folder:
                await ctx.fs.create_directory(entry.path)
                logger.info("Created folder %s", entry.path)
                return

            content = await self._download(entry)
            ctx.change_cache.record(entry.path, content)
            await ctx.fs.write(entry.path, content)
            ctx.base_content.set(entry.path, content)
            logger.info("Downloaded new %s %s", entry.kind.value, entry.path)

            if entry.is_doc and ctx.is_live:
                await ctx.ensure_joined(entry.id)
        except Exception as e:
            self._fail("create", path, e)
        finally:
            ctx.locks.release(path)

    async def _download(self, entry: EntityEntry) -> bytes:
        ctx = self._ctx
        if entry.kind == EntityKind.DOC:
            lines = await ctx.http.get_doc_content(ctx.project_id, entry.id)
            return "\n".join(lines).encode("utf-8")
        return await ctx.http.get_file_content(ctx.project_id, entry.id)

    async def on_renamed(self, message: EntityRenamed) -> None:
        entry = self._ctx.index.lookup_by_id(message.entity_id)
        if entry is None:
            logger.warning("Rename of unknown entity %s", message.entity_id)
            return
        await self._relocate(
            entry.path, "rename", lambda: self._ctx.index.rename(entry.id, message.new_name)
        )

    async def on_moved(self, message: EntityMoved) -> None:
        entry = self._ctx.index.lookup_by_id(message.entity_id)
        if entry is None:
            logger.warning("Move of unknown entity %s", message.entity_id)
            return
        await self._relocate(
            entry.path, "move", lambda: self._ctx.index.move(entry.id, message.folder_id)
        )

    async def _relocate(
        self,
        old_path: str,
        action: str,
        mutate: Callable[[], tuple[str, str] | None],
    ) -> None:
        ctx = self._ctx
        if not ctx.locks.acquire(old_path):
            logger.debug("%s is busy, dropping remote %s", old_path, action)
            return
        try:
            paths = mutate()
            if paths is None:
                logger.warning("Cannot %s %s: target folder unknown", action, old_path)
                return
            old, new = paths
            if old == new:
                return
            try:
                await ctx.fs.rename(old, new)
            except FileNotFoundError:
                logger.debug("%s missing locally, only the index was updated", old)
            ctx.base_content.rename(old, new)
            ctx.change_cache.rename(old, new)
            logger.info("Remote %s: %s -> %s", action, old, new)
        except Exception as e:
            self._fail(action, old_path, e)
        finally:
            ctx.locks.release(old_path)

    async def on_removed(self, message: EntityRemoved) -> None:
        ctx = self._ctx
        entry = ctx.index.lookup_by_id(message.entity_id)
        if entry is None:
            logger.debug("Removal of unknown entity %s", message.entity_id)
            return

        path = entry.path
        if not ctx.locks.acquire(path):
            logger.debug("%s is busy, dropping remote removal", path)
            return
        try:
            if entry.is_doc:
                await ctx.leave(entry.id)
            removed = ctx.index.remove(entry.id)
            try:
                await ctx.fs.delete(path, recursive=True)
            except FileNotFoundError:
                logger.debug("%s already gone locally", path)
            for item in removed:
                ctx.joined_docs.discard(item.id)
                ctx.forget(item.path)
            logger.info("Deleted %s", path)
        except Exception as e:
            self._fail("delete", path, e)
        finally:
            ctx.locks.release(path)

    async def on_document_changed(self, update: DocumentUpdate) -> None:
        """Apply an inbound OT update to the local copy of a document."""
        ctx = self._ctx
        entry = ctx.index.lookup_by_id(update.doc)
        if entry is None:
            logger.debug("Update for unknown document %s", update.doc)
            return
        if not update.ops:
            return

        path = entry.path
        if ctx.ignore.should_ignore(path):
            logger.debug("Ignoring remote update to %s", path)
            return
        if not ctx.locks.acquire(path):
            logger.debug("%s is busy, dropping remote update", path)
            return
        try:
            try:
                current = await ctx.fs.read(path)
            except FileNotFoundError:
                current = b""
            updated = ot.apply(current.decode("utf-8"), update.ops).encode("utf-8")
            ctx.change_cache.record(path, updated)
            if updated != current:
                await ctx.fs.write(path, updated)
                logger.debug("Applied v%d to %s", update.version, path)
            ctx.base_content.set(path, updated)
        except Exception as e:
            self._fail("update", path, e)
        finally:
            ctx.locks.release(path)
