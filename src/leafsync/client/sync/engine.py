"""Sync engine: owns the shared state and the lifecycle of a linked folder.

Architecture:
    ConnectionManager ──messages──► SyncEngine ──► RemoteChangeHandler
    FileWatcher ──────events──────────────────────► LocalChangeHandler
    pull_all() ───────────────────────────────────► Reconciler

connect() prefers a real-time session; when it cannot be established
the engine falls back to HTTP-only mode, where the tree is listed over
HTTP and documents are uploaded instead of edited through OT.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from leafsync.client.api import APIError, AuthenticationError, OverleafHTTPClient
from leafsync.client.collaborators import CollaboratorRegistry
from leafsync.client.connection import ConnectionManager
from leafsync.client.protocol import (
    CompilerUpdated,
    ConnectionAccepted,
    Disconnected,
    DocumentChanged,
    EntityCreated,
    EntityMoved,
    EntityRemoved,
    EntityRenamed,
    ForceDisconnect,
    ProjectFolder,
    RootDocUpdated,
    ServerMessage,
)
from leafsync.client.settings import SettingsManager
from leafsync.client.state import LocalSyncState
from leafsync.client.status import StatusEmitter
from leafsync.client.sync.cache import BaseContentStore
from leafsync.client.sync.conflict import AutoPrompter, ConflictPrompter, ConflictResolver
from leafsync.client.sync.context import SyncContext
from leafsync.client.sync.filesystem import LocalFileSystem
from leafsync.client.sync.ignore import IgnorePatterns
from leafsync.client.sync.local_changes import LocalChangeHandler
from leafsync.client.sync.reconcile import Reconciler
from leafsync.client.sync.remote_changes import RemoteChangeHandler
from leafsync.client.sync.tree import EntityTreeIndex
from leafsync.client.sync.types import PullResult, SyncError
from leafsync.client.sync.watcher import FileWatcher
from leafsync.client.transport import LeafConnectionError
from leafsync.core.config import Identity, ServerConfig
from leafsync.core.types import SyncStatus

logger = logging.getLogger(__name__)


def pdf_name_for(main_tex: str) -> str:
    """Compiled PDF name for a main document."""
    stem = main_tex[:-4] if main_tex.lower().endswith(".tex") else main_tex
    return stem + ".pdf"


class SyncEngine:
    """Two-way synchronization of one linked folder with its project.

    Usage:
        engine = SyncEngine(folder, settings, http, config, identity, prompter)
        await engine.connect()
        await engine.pull_all()
        await engine.watch_all_docs()
        engine.start_watching()
        ...
        await engine.disconnect()
    """

    def __init__(
        self,
        folder: Path,
        settings: SettingsManager,
        http: OverleafHTTPClient,
        config: ServerConfig,
        identity: Identity,
        prompter: ConflictPrompter | None = None,
        state: LocalSyncState | None = None,
        connection_factory: Callable[..., ConnectionManager] = ConnectionManager,
    ) -> None:
        project = settings.settings or settings.load()
        if project is None:
            raise SyncError(f"{folder} is not linked to a project")

        self._folder = Path(folder)
        self._settings = settings
        self._http = http
        self._config = config
        self._identity = identity
        self._connection_factory = connection_factory

        self._status = StatusEmitter()
        self._ctx = SyncContext(
            project_id=project.project_id,
            fs=LocalFileSystem(self._folder),
            http=http,
            status=self._status,
            ignore=IgnorePatterns(main_tex=project.main_tex, main_pdf=project.main_pdf),
            base_content=BaseContentStore(state),
        )
        self._resolver = ConflictResolver(prompter or AutoPrompter())
        self._reconciler = Reconciler(self._ctx, self._resolver, settings)
        self._local = LocalChangeHandler(self._ctx)
        self._remote = RemoteChangeHandler(self._ctx)
        self._collaborators = CollaboratorRegistry()
        self._connection: ConnectionManager | None = None
        self._watcher: FileWatcher | None = None

    # === Properties ===

    @property
    def folder(self) -> Path:
        return self._folder

    @property
    def project_id(self) -> str:
        return self._ctx.project_id

    @property
    def status(self) -> StatusEmitter:
        return self._status

    @property
    def context(self) -> SyncContext:
        return self._ctx

    @property
    def index(self) -> EntityTreeIndex:
        return self._ctx.index

    @property
    def connection(self) -> ConnectionManager | None:
        return self._connection

    @property
    def collaborators(self) -> CollaboratorRegistry:
        return self._collaborators

    @property
    def local_changes(self) -> LocalChangeHandler:
        return self._local

    @property
    def remote_changes(self) -> RemoteChangeHandler:
        return self._remote

    @property
    def is_live(self) -> bool:
        return self._ctx.is_live

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    # === Lifecycle ===

    async def connect(self, use_socket: bool = True) -> None:
        """Connect to the project and build the entity index.

        Raises:
            AuthenticationError: Credentials missing or rejected.
            APIError: The project could not be listed over HTTP either.
        """
        self._status.set(SyncStatus.SYNCING, "Connecting...")
        self._ctx.ignore.load(self._folder)

        if not self._identity.is_valid:
            self._status.set(SyncStatus.ERROR, "Not logged in")
            raise AuthenticationError("No session cookies configured")

        root_doc_id: str | None = None
        try:
            if use_socket:
                root_doc_id = await self._connect_socket()
            if not self.is_live:
                root_doc_id = await self._load_tree_over_http()
        except AuthenticationError as e:
            self._status.set(SyncStatus.ERROR, f"Authentication failed: {e}")
            raise
        except APIError as e:
            self._status.set(SyncStatus.ERROR, f"Connection failed: {e}")
            raise

        self._detect_main_document(root_doc_id)
        mode = "live" if self.is_live else "HTTP only"
        logger.info("Indexed %d entities (%s)", len(self._ctx.index), mode)
        self._status.set(SyncStatus.IDLE, f"Connected ({mode})")

    async def _connect_socket(self) -> str | None:
        connection = self._connection_factory(
            self._http, self.project_id, self._config, self._identity
        )
        try:
            snapshot = await connection.connect()
        except AuthenticationError:
            raise
        except (LeafConnectionError, APIError, OSError) as e:
            logger.warning("Real-time connection failed, using HTTP only: %s", e)
            return None

        self._connection = connection
        self._ctx.connection = connection
        connection.add_listener(self._on_message)
        self._collaborators.set_own_public_id(connection.public_id)
        if snapshot.root_folder is not None:
            self._ctx.index.build(snapshot.root_folder)
        else:
            await self._load_tree_over_http()
        return snapshot.root_doc_id

    async def _load_tree_over_http(self) -> str | None:
        details = await self._http.get_project_details(self.project_id)
        if details.root_folder:
            self._ctx.index.build(ProjectFolder.from_dict(details.root_folder[0]))
        else:
            entities = await self._http.get_project_entities(self.project_id)
            self._ctx.index.build_from_entities(entities)
        return details.root_doc_id

    async def reconnect(self) -> None:
        """Re-establish a dropped real-time session and rebuild the index."""
        if self._connection is None:
            await self.connect()
            return
        snapshot = await self._connection.reconnect()
        self._ctx.joined_docs.clear()
        if snapshot.root_folder is not None:
            self._ctx.index.build(snapshot.root_folder)
        self._collaborators.set_own_public_id(self._connection.public_id)
        self._status.set(SyncStatus.IDLE, "Reconnected")

    async def disconnect(self) -> None:
        """Stop watching, leave every document and close the session."""
        self.stop_watching()
        for doc_id in list(self._ctx.joined_docs):
            await self._ctx.leave(doc_id)
        if self._connection is not None:
            await self._connection.disconnect()
        self._connection = None
        self._ctx.connection = None
        self._status.set(SyncStatus.DISCONNECTED, "Disconnected")

    # === Operations ===

    async def pull_all(self) -> PullResult:
        return await self._reconciler.pull_all()

    async def watch_all_docs(self) -> int:
        """Join every document so remote edits arrive live.

        Returns:
            Number of joined documents.
        """
        if not self.is_live:
            return 0
        for entry in self._ctx.index.entries():
            if not entry.is_doc or self._ctx.ignore.should_ignore(entry.path):
                continue
            if entry.id in self._ctx.joined_docs:
                continue
            try:
                await self._ctx.ensure_joined(entry.id)
            except LeafConnectionError as e:
                logger.warning("Could not join %s: %s", entry.path, e)
        return len(self._ctx.joined_docs)

    def start_watching(self) -> FileWatcher:
        """Start the filesystem watcher (must run inside the event loop)."""
        if self._watcher is None:
            self._watcher = FileWatcher(self._ctx.fs, self._local)
        self._watcher.start()
        return self._watcher

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    # === Remote messages ===

    async def _on_message(self, message: ServerMessage) -> None:
        self._collaborators.handle(message)

        if isinstance(message, EntityCreated):
            await self._remote.on_created(message)
        elif isinstance(message, EntityRenamed):
            await self._remote.on_renamed(message)
        elif isinstance(message, EntityMoved):
            await self._remote.on_moved(message)
        elif isinstance(message, EntityRemoved):
            await self._remote.on_removed(message)
        elif isinstance(message, DocumentChanged):
            await self._remote.on_document_changed(message.update)
        elif isinstance(message, RootDocUpdated):
            self._detect_main_document(message.root_doc_id)
        elif isinstance(message, CompilerUpdated):
            logger.info("Project compiler changed to %s", message.compiler)
        elif isinstance(message, ConnectionAccepted):
            self._collaborators.set_own_public_id(message.public_id)
        elif isinstance(message, (Disconnected, ForceDisconnect)):
            self._ctx.joined_docs.clear()
            self._status.set(SyncStatus.DISCONNECTED, "Connection lost")

    def _detect_main_document(self, root_doc_id: str | None) -> None:
        """Use the project's root document as $MAIN_TEX."""
        if not root_doc_id:
            return
        entry = self._ctx.index.lookup_by_id(root_doc_id)
        if entry is None or not entry.is_doc:
            return
        main_tex = entry.path.lstrip("/")
        main_pdf = pdf_name_for(main_tex)
        self._ctx.ignore.set_main_document(main_tex, main_pdf)

        current = self._settings.settings
        if current is not None and (current.main_tex, current.main_pdf) != (main_tex, main_pdf):
            self._settings.update(main_tex=main_tex, main_pdf=main_pdf)
            logger.info("Main document is %s", main_tex)
