"""State shared by the sync pipelines and the primitives they build on.

SyncContext owns the entity index, the caches, the lock set and the
joined-document set, and knows how to move content between the local
folder and the project: over OT when a real-time session is live, over
HTTP otherwise.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from leafsync.client.api import OverleafHTTPClient
from leafsync.client.protocol import DocumentUpdate, JoinedDocument
from leafsync.client.status import StatusEmitter
from leafsync.client.sync import ot
from leafsync.client.sync.cache import BaseContentStore, ChangeCache, PathLocks
from leafsync.client.sync.filesystem import LocalFileSystem
from leafsync.client.sync.ignore import IgnorePatterns
from leafsync.client.sync.tree import ROOT_PATH, EntityEntry, EntityTreeIndex, base_name, parent_path
from leafsync.client.transport import LeafConnectionError, NotConnected
from leafsync.core.types import EntityKind

if TYPE_CHECKING:
    from leafsync.client.connection import ConnectionManager

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (
    ".tex",
    ".bib",
    ".cls",
    ".sty",
    ".txt",
    ".md",
    ".rst",
    ".json",
    ".xml",
    ".yaml",
    ".yml",
    ".csv",
    ".tsv",
    ".gitignore",
    ".latexmkrc",
    "makefile",
    ".leafignore",
)


def is_text_file(path: str) -> bool:
    """Whether a file is created remotely as an editable document."""
    name = base_name(path).lower()
    return any(name.endswith(ext) or name == ext.lstrip(".") for ext in TEXT_EXTENSIONS)


class SyncContext:
    """Engine state handed to the local and remote pipelines."""

    def __init__(
        self,
        project_id: str,
        fs: LocalFileSystem,
        http: OverleafHTTPClient,
        status: StatusEmitter | None = None,
        ignore: IgnorePatterns | None = None,
        base_content: BaseContentStore | None = None,
        change_cache: ChangeCache | None = None,
    ) -> None:
        self.project_id = project_id
        self.fs = fs
        self.http = http
        self.status = status or StatusEmitter()
        self.ignore = ignore or IgnorePatterns()
        self.index = EntityTreeIndex()
        self.base_content = base_content or BaseContentStore()
        self.change_cache = change_cache or ChangeCache()
        self.locks = PathLocks()
        self.joined_docs: set[str] = set()
        self.connection: ConnectionManager | None = None

    @property
    def is_live(self) -> bool:
        """Whether a real-time session is established."""
        return self.connection is not None and self.connection.is_connected

    # === Bookkeeping ===

    def record_synced(self, path: str, content: bytes) -> None:
        """Note that path holds content on both sides."""
        self.base_content.set(path, content)
        self.change_cache.record(path, content)

    def forget(self, path: str) -> None:
        self.base_content.discard(path)
        self.change_cache.forget(path)

    def parent_folder_id(self, path: str) -> str | None:
        """Folder id containing path, falling back to the root folder."""
        folder = self.index.folder_for(path)
        return folder.id if folder is not None else self.index.root_id

    # === Documents ===

    async def ensure_joined(self, doc_id: str) -> JoinedDocument:
        """Join a document (or re-read it if already joined)."""
        if self.connection is None:
            raise NotConnected("No real-time session")
        joined = await self.connection.join_doc(doc_id)
        self.joined_docs.add(doc_id)
        return joined

    async def leave(self, doc_id: str) -> None:
        """Leave a joined document; failures are ignored."""
        if doc_id not in self.joined_docs:
            return
        self.joined_docs.discard(doc_id)
        connection = self.connection
        if connection is None or not connection.is_connected:
            return
        try:
            await connection.leave_doc(doc_id)
        except LeafConnectionError as e:
            logger.debug("leaveDoc %s failed: %s", doc_id, e)

    # === Transfers ===

    async def fetch_remote(self, entry: EntityEntry) -> bytes:
        """Current remote content of a doc or file."""
        connection = self.connection
        if entry.is_doc:
            if connection is not None and connection.is_connected:
                was_joined = entry.id in self.joined_docs
                joined = await connection.join_doc(entry.id)
                if not was_joined:
                    await connection.leave_doc(entry.id)
                return joined.text.encode("utf-8")
            lines = await self.http.get_doc_content(self.project_id, entry.id)
            return "\n".join(lines).encode("utf-8")
        return await self.http.get_file_content(self.project_id, entry.id)

    async def push(self, entry: EntityEntry, content: bytes) -> None:
        """Send local content for an existing entity.

        Documents go through OT when a session is live; everything else
        is uploaded over HTTP.
        """
        connection = self.connection
        if entry.is_doc and connection is not None and connection.is_connected:
            joined = await self.ensure_joined(entry.id)
            ops = ot.diff(joined.text, content.decode("utf-8"))
            if not ops:
                logger.debug("%s already up to date", entry.path)
                return
            update = DocumentUpdate(doc=entry.id, ops=ops, version=joined.version)
            await connection.apply_ot_update(entry.id, update)
            logger.info("Pushed %s (v%d)", entry.path, joined.version)
            return

        folder_id = entry.parent_id or self.index.root_id or ""
        response = await self.http.upload_file(self.project_id, folder_id, entry.name, content)
        new_id = response.get("entity_id")
        if new_id and new_id != entry.id:
            logger.debug("%s replaced remotely: %s -> %s", entry.path, entry.id, new_id)
            self.index.replace_id(entry.id, str(new_id))
        logger.info("Uploaded %s", entry.path)

    async def ensure_remote_folder(self, path: str) -> str | None:
        """Id of the folder at path, creating missing remote folders."""
        if path == ROOT_PATH:
            return self.index.root_id
        existing = self.index.lookup_by_path(path)
        if existing is not None and existing.is_folder:
            return existing.id
        entry = await self.create_remote(path, b"", is_dir=True)
        return entry.id if entry is not None else self.index.root_id

    async def create_remote(self, path: str, content: bytes, is_dir: bool) -> EntityEntry | None:
        """Create a new remote entity for a local path and index it.

        Text files become documents whose initial content is pushed right
        away; other files are uploaded.

        Returns:
            The indexed entry, or None if the server returned no id.
        """
        name = base_name(path)
        parent_id = await self.ensure_remote_folder(parent_path(path))
        if parent_id is None:
            logger.warning("No remote folder for %s", path)
            return None

        if is_dir:
            response = await self.http.add_folder(self.project_id, parent_id, name)
            kind, new_id = EntityKind.FOLDER, response.get("_id")
        elif is_text_file(path):
            response = await self.http.add_doc(self.project_id, parent_id, name)
            kind, new_id = EntityKind.DOC, response.get("_id")
        else:
            response = await self.http.upload_file(self.project_id, parent_id, name, content)
            kind, new_id = EntityKind.FILE, response.get("entity_id")

        if not new_id:
            logger.warning("Server returned no id for new %s %s", kind.value, path)
            return None
        entry = self.index.insert(str(new_id), kind, name, parent_id)
        logger.info("Created %s %s", kind.value, entry.path)

        if kind == EntityKind.DOC and content:
            await self.push(entry, content)
        return entry
