"""Project connection management for the real-time service.

This module provides:
- ConnectionManager: Negotiates a project session, dispatches typed
  server messages to listeners and exposes the request primitives
- ConnectionState / Scheme: The negotiation state machine

Negotiation:
    DISCONNECTED ─► HANDSHAKING_A ─┬─► CONNECTED
                                   └─► HANDSHAKING_B ─┬─► CONNECTED
                                                      └─► FAILED

Scheme A passes the project id as a query parameter and receives the
project in a `joinProjectResponse` event. Scheme B connects without it
and emits `joinProject`, racing the acknowledgement against a
`connectionRejected` event. Each scheme gets its own handshake deadline
and the fallback happens at most once per connect(). Authentication
failures never fall back.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from leafsync.client.api import AuthenticationError, OverleafHTTPClient
from leafsync.client.protocol import (
    ConnectionAccepted,
    ConnectionRejected,
    Disconnected,
    DocumentUpdate,
    ForceDisconnect,
    JoinedDocument,
    JoinProjectResponse,
    OnlineUser,
    ProjectSnapshot,
    ProtocolError,
    ServerMessage,
    parse_event,
)
from leafsync.client.transport import (
    EVENT_DISCONNECT,
    EVENT_ERROR,
    HandshakeTimeout,
    LeafConnectionError,
    NotConnected,
    ProtocolRejected,
    RemoteCallError,
    RequestTimeout,
    SocketTransport,
)
from leafsync.core.config import HANDSHAKE_TIMEOUT, REQUEST_TIMEOUT, Identity, ServerConfig

logger = logging.getLogger(__name__)

Listener = Callable[[ServerMessage], "Awaitable[None] | None"]


class ConnectionState(str, Enum):
    """Negotiation state of a ConnectionManager."""

    DISCONNECTED = "disconnected"
    HANDSHAKING_A = "handshaking_a"
    HANDSHAKING_B = "handshaking_b"
    CONNECTED = "connected"
    FAILED = "failed"


class Scheme(str, Enum):
    """Project join scheme."""

    QUERY = "query"
    JOIN = "join"


_HANDSHAKE_STATE = {
    Scheme.QUERY: ConnectionState.HANDSHAKING_A,
    Scheme.JOIN: ConnectionState.HANDSHAKING_B,
}


def decode_doc_line(line: str) -> str:
    """Decode a joinDoc line sent as latin-1 code points of UTF-8 bytes."""
    try:
        return line.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return line


class ConnectionManager:
    """Real-time session with one project.

    Usage:
        manager = ConnectionManager(http, "project-id", config, identity)
        manager.add_listener(on_message)
        snapshot = await manager.connect()
        doc = await manager.join_doc(doc_id)
        await manager.disconnect()
    """

    def __init__(
        self,
        http: OverleafHTTPClient,
        project_id: str,
        config: ServerConfig,
        identity: Identity,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        request_timeout: float = REQUEST_TIMEOUT,
        transport_factory: Callable[..., SocketTransport] = SocketTransport,
    ) -> None:
        """Initialize the manager.

        Args:
            http: HTTP client used for the Socket.IO session handshake.
            project_id: Project to join.
            config: Server configuration.
            identity: Session cookies.
            handshake_timeout: Deadline for each scheme's handshake.
            request_timeout: Deadline for each acknowledged request.
            transport_factory: Creates a transport (injectable for tests).
        """
        self._http = http
        self._project_id = project_id
        self._config = config
        self._identity = identity
        self._handshake_timeout = handshake_timeout
        self._request_timeout = request_timeout
        self._transport_factory = transport_factory

        self._state = ConnectionState.DISCONNECTED
        self._transport: SocketTransport | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._backlog: list[tuple[str, list[Any]]] = []
        self._listeners: list[Listener] = []

        self._snapshot: ProjectSnapshot | None = None
        self._public_id: str | None = None
        self._scheme: Scheme | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def project(self) -> ProjectSnapshot | None:
        return self._snapshot

    @property
    def public_id(self) -> str | None:
        return self._public_id

    @property
    def scheme(self) -> Scheme | None:
        """Scheme that established the current session."""
        return self._scheme

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a message listener. Listeners survive reconnects.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    # === Lifecycle ===

    async def connect(self) -> ProjectSnapshot:
        """Negotiate a session and join the project.

        Raises:
            AuthenticationError: Identity missing or rejected.
            HandshakeTimeout: Neither scheme completed in time.
            ProtocolRejected: The server rejected both schemes.
        """
        if not self._identity.is_valid:
            self._state = ConnectionState.FAILED
            raise AuthenticationError("No session cookies configured")

        last_error: LeafConnectionError | None = None
        for scheme in (Scheme.QUERY, Scheme.JOIN):
            self._state = _HANDSHAKE_STATE[scheme]
            logger.debug("Handshaking with scheme %s", scheme.value)
            try:
                snapshot = await self._handshake(scheme)
            except AuthenticationError:
                await self._teardown()
                self._state = ConnectionState.FAILED
                raise
            except (HandshakeTimeout, ProtocolRejected) as e:
                logger.warning("Scheme %s failed: %s", scheme.value, e)
                await self._teardown()
                last_error = e
                continue
            except BaseException:
                await self._teardown()
                self._state = ConnectionState.FAILED
                raise

            self._snapshot = snapshot
            self._scheme = scheme
            self._state = ConnectionState.CONNECTED
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())
            logger.info("Connected to project %s (scheme %s)", snapshot.name, scheme.value)
            return snapshot

        self._state = ConnectionState.FAILED
        raise last_error or ProtocolRejected("No connection scheme succeeded")

    async def reconnect(self) -> ProjectSnapshot:
        """Re-run negotiation unless already connected."""
        if self.is_connected and self._snapshot is not None:
            return self._snapshot
        logger.info("Reconnecting...")
        await self._teardown()
        return await self.connect()

    async def disconnect(self) -> None:
        """Close the session."""
        await self._teardown()
        self._state = ConnectionState.DISCONNECTED

    async def _teardown(self) -> None:
        if self._dispatch_task and self._dispatch_task is not asyncio.current_task():
            self._dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatch_task
        self._dispatch_task = None
        if self._transport:
            await self._transport.close()
            self._transport = None
        self._backlog.clear()

    # === Handshakes ===

    async def _handshake(self, scheme: Scheme) -> ProjectSnapshot:
        handshake = self._join_by_query if scheme is Scheme.QUERY else self._join_by_event
        try:
            return await asyncio.wait_for(handshake(), timeout=self._handshake_timeout)
        except TimeoutError as e:
            raise HandshakeTimeout(
                f"Scheme {scheme.value} handshake timed out after {self._handshake_timeout:g}s"
            ) from e

    async def _open_transport(self, query: dict[str, str]) -> SocketTransport:
        session = await self._http.get_socket_session(query)
        transport = self._transport_factory(
            self._config, self._identity, request_timeout=self._request_timeout
        )
        self._transport = transport
        await transport.open(session.sid, query)
        return transport

    async def _join_by_query(self) -> ProjectSnapshot:
        query = {"projectId": self._project_id, "t": _timestamp()}
        transport = await self._open_transport(query)
        while True:
            name, args = await transport.events.get()
            message = self._parse_handshake_event(name, args)
            if isinstance(message, JoinProjectResponse):
                self._public_id = message.public_id
                return message.project

    async def _join_by_event(self) -> ProjectSnapshot:
        transport = await self._open_transport({"t": _timestamp()})
        await transport.wait_connected()

        ack = asyncio.create_task(
            transport.emit("joinProject", {"project_id": self._project_id})
        )
        rejection = asyncio.create_task(self._wait_for_rejection(transport))
        try:
            done, _ = await asyncio.wait({ack, rejection}, return_when=asyncio.FIRST_COMPLETED)
            if rejection in done:
                rejection.result()
            try:
                data = ack.result()
            except RemoteCallError as e:
                raise ProtocolRejected(str(e)) from e
        finally:
            for task in (ack, rejection):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError, LeafConnectionError):
                        await task

        if not data or not isinstance(data[0], dict):
            raise ProtocolRejected("joinProject returned no project")
        return ProjectSnapshot.from_dict(data[0])

    async def _wait_for_rejection(self, transport: SocketTransport) -> None:
        while True:
            name, args = await transport.events.get()
            self._parse_handshake_event(name, args)

    def _parse_handshake_event(self, name: str, args: list[Any]) -> ServerMessage | None:
        """Consume an event that arrives before the session is established.

        Raises ProtocolRejected for rejections; keeps unrelated events for
        the dispatch loop.
        """
        if name == EVENT_DISCONNECT:
            raise ProtocolRejected("Socket closed during handshake")
        if name == EVENT_ERROR:
            reason = args[0] if args else ""
            if "unauthorized" in str(reason).lower():
                raise AuthenticationError(f"Socket handshake unauthorized: {reason}")
            raise ProtocolRejected(f"Socket error: {reason}")
        try:
            message = parse_event(name, args)
        except ProtocolError as e:
            raise ProtocolRejected(str(e)) from e
        if isinstance(message, ConnectionRejected):
            raise ProtocolRejected(f"Connection rejected: {message.reason}")
        if isinstance(message, ConnectionAccepted):
            self._public_id = message.public_id
        elif not isinstance(message, JoinProjectResponse):
            self._backlog.append((name, args))
        return message

    # === Dispatch ===

    async def _dispatch_loop(self) -> None:
        """Deliver inbound messages to listeners, in arrival order."""
        transport = self._transport
        if transport is None:
            return

        backlog, self._backlog = self._backlog, []
        for name, args in backlog:
            await self._dispatch(name, args)

        while True:
            name, args = await transport.events.get()
            if name == EVENT_DISCONNECT:
                logger.info("Disconnected from project")
                self._state = ConnectionState.DISCONNECTED
                await self._fan_out(Disconnected())
                return
            await self._dispatch(name, args)

    async def _dispatch(self, name: str, args: list[Any]) -> None:
        if name == EVENT_ERROR:
            return
        try:
            message = parse_event(name, args)
        except ProtocolError as e:
            logger.warning("Dropping event: %s", e)
            return
        if message is None:
            return
        if isinstance(message, ConnectionAccepted):
            self._public_id = message.public_id
        elif isinstance(message, ForceDisconnect):
            logger.warning("Server forced disconnect: %s", message.reason)
            self._state = ConnectionState.DISCONNECTED
        await self._fan_out(message)

    async def _fan_out(self, message: ServerMessage) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener failed on %s", type(message).__name__)

    # === Requests ===

    def _require_transport(self) -> SocketTransport:
        if not self.is_connected or self._transport is None:
            raise NotConnected("Not connected to project")
        return self._transport

    async def join_doc(self, doc_id: str) -> JoinedDocument:
        """Join a document and return its current content and version."""
        data = await self._require_transport().emit("joinDoc", doc_id, {"encodeRanges": True})
        if len(data) < 2:
            raise ProtocolError(f"joinDoc returned {len(data)} values")
        lines = [decode_doc_line(line) for line in data[0] or []]
        return JoinedDocument(lines=lines, version=int(data[1]))

    async def leave_doc(self, doc_id: str) -> None:
        await self._require_transport().emit("leaveDoc", doc_id)

    async def apply_ot_update(self, doc_id: str, update: DocumentUpdate) -> None:
        """Submit an OT update tagged with the version it was computed against."""
        await self._require_transport().emit("applyOtUpdate", doc_id, update.to_dict())

    async def get_connected_users(self) -> list[OnlineUser]:
        data = await self._require_transport().emit("clientTracking.getConnectedUsers")
        users = data[0] if data else []
        return [OnlineUser.from_connected_user(u) for u in users or []]

    async def update_position(self, doc_id: str, row: int, column: int) -> None:
        """Publish the local cursor position (fire-and-forget)."""
        await self._require_transport().send(
            "clientTracking.updatePosition",
            {"row": row, "column": column, "doc_id": doc_id},
        )


def _timestamp() -> str:
    return str(int(time.time() * 1000))


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "HandshakeTimeout",
    "LeafConnectionError",
    "NotConnected",
    "ProtocolRejected",
    "RequestTimeout",
    "Scheme",
]
