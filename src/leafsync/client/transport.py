"""WebSocket transport speaking Socket.IO v0.9.

This module provides:
- SocketTransport: One websocket session with heartbeats, acks and an
  inbound event queue
- with_timeout(): The single timeout helper used by every round trip
- Connection error hierarchy

Architecture:
    ConnectionManager ──emit()──► SocketTransport ──ws──► Overleaf
    ConnectionManager ◄─events─── SocketTransport ◄─ws─── Overleaf
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import ssl
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from leafsync.client.protocol import (
    DISCONNECT,
    HEARTBEAT,
    Packet,
    PacketType,
    ProtocolError,
    decode_ack,
    decode_event,
    event_packet,
)
from leafsync.core.config import REQUEST_TIMEOUT, Identity, ServerConfig

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Pseudo-events queued by the transport itself
EVENT_DISCONNECT = "disconnect"
EVENT_ERROR = "error"


class LeafConnectionError(Exception):
    """Base exception for real-time connection errors."""


class HandshakeTimeout(LeafConnectionError):
    """The project handshake did not complete in time."""


class ProtocolRejected(LeafConnectionError):
    """The server rejected the connection scheme."""


class RequestTimeout(LeafConnectionError):
    """A request did not receive its acknowledgement in time."""


class NotConnected(LeafConnectionError):
    """No open transport to send on."""


class RemoteCallError(LeafConnectionError):
    """The server acknowledged a request with an error."""


async def with_timeout(awaitable: Awaitable[T], timeout: float, what: str) -> T:
    """Await with a deadline, raising RequestTimeout when it passes."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as e:
        raise RequestTimeout(f"{what} timed out after {timeout:g}s") from e


def _error_text(err: Any) -> str:
    if isinstance(err, dict):
        return str(err.get("message", err))
    return str(err)


class SocketTransport:
    """A single Socket.IO v0.9 session over a websocket.

    Inbound events are queued on `events` as (name, args) tuples. When the
    socket closes a ("disconnect", []) tuple is queued and pending requests
    fail with NotConnected.
    """

    def __init__(
        self,
        config: ServerConfig,
        identity: Identity,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._config = config
        self._identity = identity
        self._request_timeout = request_timeout

        self.events: asyncio.Queue[tuple[str, list[Any]]] = asyncio.Queue()

        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[list[Any]]] = {}
        self._ack_ids = itertools.count(1)
        self._connected = asyncio.Event()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    def websocket_url(self, sid: str, query: dict[str, str]) -> str:
        url = f"{self._config.ws_origin}/socket.io/1/websocket/{sid}"
        if query:
            url += "?" + urlencode(query)
        return url

    async def open(self, sid: str, query: dict[str, str]) -> None:
        """Open the websocket for a handshaken session and start reading."""
        url = self.websocket_url(sid, query)

        ssl_context: ssl.SSLContext | None = None
        if url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            url,
            ssl=ssl_context,
            additional_headers={
                "Cookie": self._identity.cookies,
                "Origin": self._config.origin,
            },
            ping_interval=None,
            max_size=None,
        )
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())
        logger.debug("Socket opened for session %s", sid)

    async def wait_connected(self) -> None:
        """Wait for the server's connect frame."""
        await self._connected.wait()

    async def emit(self, name: str, *args: Any) -> list[Any]:
        """Send an event and wait for its acknowledgement.

        Returns:
            Acknowledgement data, without the leading error slot.

        Raises:
            RequestTimeout: If no acknowledgement arrives in time.
            RemoteCallError: If the server acknowledged with an error.
            NotConnected: If the socket is closed.
        """
        ack_id = next(self._ack_ids)
        future: asyncio.Future[list[Any]] = asyncio.get_running_loop().create_future()
        self._pending[ack_id] = future
        try:
            await self._send(event_packet(name, list(args), ack_id))
            result = await with_timeout(future, self._request_timeout, name)
        finally:
            self._pending.pop(ack_id, None)

        if result and result[0]:
            raise RemoteCallError(f"{name} failed: {_error_text(result[0])}")
        return result[1:]

    async def send(self, name: str, *args: Any) -> None:
        """Send an event without waiting for an acknowledgement."""
        await self._send(event_packet(name, list(args)))

    async def close(self) -> None:
        """Close the socket and stop reading."""
        if self._reader:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._ws:
            with contextlib.suppress(WebSocketException, OSError):
                await self._ws.send(DISCONNECT.encode())
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
        self._closed = True
        self._fail_pending(NotConnected("Connection closed"))

    async def _send(self, packet: Packet) -> None:
        if self._ws is None or self._closed:
            raise NotConnected("Socket is not open")
        try:
            await self._ws.send(packet.encode())
        except WebSocketException as e:
            raise NotConnected(f"Send failed: {e}") from e

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _read_loop(self) -> None:
        """Read frames until the socket closes."""
        ws = self._ws
        if ws is None:
            return
        try:
            while True:
                raw = await ws.recv()
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8")
                try:
                    packet = Packet.decode(raw)
                except ProtocolError as e:
                    logger.warning("Dropping frame: %s", e)
                    continue
                if not await self._handle_packet(packet):
                    logger.info("Server closed the session")
                    break
        except ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self._closed = True
            self._fail_pending(NotConnected("Connection closed"))
            self.events.put_nowait((EVENT_DISCONNECT, []))

    async def _handle_packet(self, packet: Packet) -> bool:
        """Handle one frame. Returns False when the session ends."""
        if packet.type == PacketType.HEARTBEAT:
            with contextlib.suppress(NotConnected):
                await self._send(HEARTBEAT)
        elif packet.type == PacketType.CONNECT:
            self._connected.set()
        elif packet.type == PacketType.EVENT:
            try:
                self.events.put_nowait(decode_event(packet))
            except ProtocolError as e:
                logger.warning("Dropping event: %s", e)
        elif packet.type == PacketType.ACK:
            try:
                ack_id, args = decode_ack(packet)
            except ProtocolError as e:
                logger.warning("Dropping ack: %s", e)
                return True
            future = self._pending.get(ack_id)
            if future is not None and not future.done():
                future.set_result(args)
        elif packet.type == PacketType.ERROR:
            logger.warning("Socket error: %s", packet.data)
            self.events.put_nowait((EVENT_ERROR, [packet.data]))
        elif packet.type == PacketType.DISCONNECT:
            return False
        else:
            logger.debug("Ignoring packet type %s", packet.type.name)
        return True
