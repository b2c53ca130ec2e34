"""Wire protocol for the Overleaf real-time service.

This module provides:
- Packet: Socket.IO v0.9 frame codec ("type:id:endpoint:data")
- Wire records: OtOp, DocumentUpdate, ProjectFolder, ProjectSnapshot, ...
- Typed inbound messages and parse_event() to decode raw events once

Frame types:
    0 disconnect, 1 connect, 2 heartbeat, 3 message, 4 json,
    5 event, 6 ack, 7 error, 8 noop

An event expecting an acknowledgement carries the id "N+"; the server
answers with "6:::N+[err, ...data]".
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

from leafsync.core.types import EntityKind

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """A frame or payload could not be decoded."""


class PacketType(IntEnum):
    """Socket.IO v0.9 packet types."""

    DISCONNECT = 0
    CONNECT = 1
    HEARTBEAT = 2
    MESSAGE = 3
    JSON = 4
    EVENT = 5
    ACK = 6
    ERROR = 7
    NOOP = 8


@dataclass(frozen=True)
class Packet:
    """A single Socket.IO v0.9 frame."""

    type: PacketType
    id: str = ""
    endpoint: str = ""
    data: str = ""

    def encode(self) -> str:
        """Encode to the wire representation."""
        head = f"{int(self.type)}:{self.id}:{self.endpoint}"
        if self.data:
            return f"{head}:{self.data}"
        return head

    @classmethod
    def decode(cls, raw: str) -> Packet:
        """Decode a frame.

        Raises:
            ProtocolError: If the frame is malformed.
        """
        parts = raw.split(":", 3)
        if len(parts) < 3:
            # Bare heartbeats and connects may arrive as "2::" / "1::"
            parts += [""] * (3 - len(parts))
        try:
            packet_type = PacketType(int(parts[0]))
        except ValueError as e:
            raise ProtocolError(f"Invalid packet type in {raw[:40]!r}") from e
        data = parts[3] if len(parts) > 3 else ""
        return cls(type=packet_type, id=parts[1], endpoint=parts[2], data=data)

    @property
    def wants_ack(self) -> bool:
        return self.id.endswith("+")


HEARTBEAT = Packet(PacketType.HEARTBEAT)
DISCONNECT = Packet(PacketType.DISCONNECT)


def event_packet(name: str, args: list[Any], ack_id: int | None = None) -> Packet:
    """Build an event frame, optionally requesting an acknowledgement."""
    payload = json.dumps({"name": name, "args": args}, separators=(",", ":"))
    packet_id = f"{ack_id}+" if ack_id is not None else ""
    return Packet(PacketType.EVENT, id=packet_id, data=payload)


def decode_event(packet: Packet) -> tuple[str, list[Any]]:
    """Return (name, args) carried by an event frame."""
    try:
        payload = json.loads(packet.data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid event payload: {packet.data[:80]!r}") from e
    if not isinstance(payload, dict) or "name" not in payload:
        raise ProtocolError(f"Event without name: {packet.data[:80]!r}")
    args = payload.get("args") or []
    return str(payload["name"]), list(args)


def decode_ack(packet: Packet) -> tuple[int, list[Any]]:
    """Return (ack id, args) carried by an ack frame."""
    ack_id, _, raw_args = packet.data.partition("+")
    try:
        ack = int(ack_id)
    except ValueError as e:
        raise ProtocolError(f"Invalid ack id: {packet.data[:40]!r}") from e
    if not raw_args:
        return ack, []
    try:
        args = json.loads(raw_args)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid ack payload: {raw_args[:80]!r}") from e
    return ack, list(args) if isinstance(args, list) else [args]


# === Wire records ===


@dataclass
class OtOp:
    """One position-addressed OT component.

    Attributes:
        p: Character offset.
        i: Text inserted at p.
        d: Text deleted at p.
        u: Undo flag set by the editor.
    """

    p: int
    i: str | None = None
    d: str | None = None
    u: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OtOp:
        return cls(p=int(data["p"]), i=data.get("i"), d=data.get("d"), u=data.get("u"))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"p": self.p}
        if self.i is not None:
            out["i"] = self.i
        if self.d is not None:
            out["d"] = self.d
        if self.u is not None:
            out["u"] = self.u
        return out


@dataclass
class DocumentUpdate:
    """OT update for a single document, inbound or outbound."""

    doc: str
    ops: list[OtOp] = field(default_factory=list)
    version: int = 0
    last_version: int | None = None
    hash: str | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentUpdate:
        """Create from an otUpdateApplied payload."""
        return cls(
            doc=str(data["doc"]),
            ops=[OtOp.from_dict(op) for op in data.get("op") or []],
            version=int(data.get("v", 0)),
            last_version=data.get("lastV"),
            hash=data.get("hash"),
            meta=data.get("meta"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for applyOtUpdate."""
        out: dict[str, Any] = {
            "doc": self.doc,
            "op": [op.to_dict() for op in self.ops],
            "v": self.version,
        }
        if self.last_version is not None:
            out["lastV"] = self.last_version
        if self.hash is not None:
            out["hash"] = self.hash
        if self.meta is not None:
            out["meta"] = self.meta
        return out


@dataclass
class ProjectEntity:
    """Leaf entity (doc or file) in a project tree."""

    id: str
    name: str
    kind: EntityKind


@dataclass
class ProjectFolder:
    """Folder node of a project tree snapshot."""

    id: str
    name: str
    docs: list[ProjectEntity] = field(default_factory=list)
    file_refs: list[ProjectEntity] = field(default_factory=list)
    folders: list[ProjectFolder] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectFolder:
        """Create from a rootFolder element of the project record."""
        return cls(
            id=str(data["_id"]),
            name=data.get("name", ""),
            docs=[
                ProjectEntity(str(d["_id"]), d["name"], EntityKind.DOC)
                for d in data.get("docs") or []
            ],
            file_refs=[
                ProjectEntity(str(f["_id"]), f["name"], EntityKind.FILE)
                for f in data.get("fileRefs") or []
            ],
            folders=[cls.from_dict(f) for f in data.get("folders") or []],
        )


@dataclass
class ProjectSnapshot:
    """Project record returned when joining a project."""

    project_id: str
    name: str
    root_folder: ProjectFolder | None
    root_doc_id: str | None = None
    compiler: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectSnapshot:
        root_folders = data.get("rootFolder") or []
        return cls(
            project_id=str(data.get("_id", "")),
            name=data.get("name", ""),
            root_folder=ProjectFolder.from_dict(root_folders[0]) if root_folders else None,
            root_doc_id=data.get("rootDoc_id"),
            compiler=data.get("compiler"),
        )


@dataclass
class JoinedDocument:
    """Content and version returned by joinDoc."""

    lines: list[str]
    version: int

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass
class OnlineUser:
    """A collaborator currently connected to the project."""

    client_id: str
    user_id: str
    name: str
    email: str
    doc_id: str = ""
    row: int = 0
    column: int = 0
    last_updated: float = 0.0

    @classmethod
    def from_connected_user(cls, data: dict[str, Any]) -> OnlineUser:
        """Create from a clientTracking.getConnectedUsers entry."""
        cursor = data.get("cursorData") or {}
        name = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p)
        try:
            last_updated = float(data.get("last_updated_at") or 0)
        except (TypeError, ValueError):
            last_updated = 0.0
        return cls(
            client_id=str(data.get("client_id", "")),
            user_id=str(data.get("user_id", "")),
            name=name,
            email=data.get("email", ""),
            doc_id=cursor.get("doc_id", ""),
            row=int(cursor.get("row", 0)),
            column=int(cursor.get("column", 0)),
            last_updated=last_updated,
        )

    @classmethod
    def from_cursor_update(cls, data: dict[str, Any]) -> OnlineUser:
        """Create from a clientTracking.clientUpdated payload."""
        return cls(
            client_id=str(data.get("id", "")),
            user_id=str(data.get("user_id", "")),
            name=data.get("name", ""),
            email=data.get("email", ""),
            doc_id=data.get("doc_id", ""),
            row=int(data.get("row", 0)),
            column=int(data.get("column", 0)),
        )


# === Typed inbound messages ===


@dataclass(frozen=True)
class EntityCreated:
    parent_folder_id: str
    kind: EntityKind
    entity_id: str
    name: str


@dataclass(frozen=True)
class EntityRenamed:
    entity_id: str
    new_name: str


@dataclass(frozen=True)
class EntityRemoved:
    entity_id: str


@dataclass(frozen=True)
class EntityMoved:
    entity_id: str
    folder_id: str


@dataclass(frozen=True)
class DocumentChanged:
    update: DocumentUpdate


@dataclass(frozen=True)
class CollaboratorUpdated:
    user: OnlineUser


@dataclass(frozen=True)
class CollaboratorDisconnected:
    client_id: str


@dataclass(frozen=True)
class ConnectionAccepted:
    public_id: str


@dataclass(frozen=True)
class ConnectionRejected:
    reason: str


@dataclass(frozen=True)
class ForceDisconnect:
    reason: str


@dataclass(frozen=True)
class JoinProjectResponse:
    public_id: str
    project: ProjectSnapshot


@dataclass(frozen=True)
class RootDocUpdated:
    root_doc_id: str


@dataclass(frozen=True)
class CompilerUpdated:
    compiler: str


@dataclass(frozen=True)
class Disconnected:
    """The transport closed; raised locally, never sent by the server."""


ServerMessage = Union[
    EntityCreated,
    EntityRenamed,
    EntityRemoved,
    EntityMoved,
    DocumentChanged,
    CollaboratorUpdated,
    CollaboratorDisconnected,
    ConnectionAccepted,
    ConnectionRejected,
    ForceDisconnect,
    JoinProjectResponse,
    RootDocUpdated,
    CompilerUpdated,
    Disconnected,
]

_CREATE_EVENTS = {
    "reciveNewDoc": EntityKind.DOC,
    "reciveNewFile": EntityKind.FILE,
    "reciveNewFolder": EntityKind.FOLDER,
}


def _reason(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("message", value))
    return "" if value is None else str(value)


def parse_event(name: str, args: list[Any]) -> ServerMessage | None:
    """Decode a raw event into a typed message.

    Returns:
        The typed message, or None for events the client does not consume.

    Raises:
        ProtocolError: If a known event carries a malformed payload.
    """
    try:
        if name in _CREATE_EVENTS:
            entity = args[1]
            return EntityCreated(
                parent_folder_id=str(args[0]),
                kind=_CREATE_EVENTS[name],
                entity_id=str(entity["_id"]),
                name=entity["name"],
            )
        if name == "reciveEntityRename":
            return EntityRenamed(str(args[0]), str(args[1]))
        if name == "removeEntity":
            return EntityRemoved(str(args[0]))
        if name == "reciveEntityMove":
            return EntityMoved(str(args[0]), str(args[1]))
        if name == "otUpdateApplied":
            return DocumentChanged(DocumentUpdate.from_dict(args[0]))
        if name == "clientTracking.clientUpdated":
            return CollaboratorUpdated(OnlineUser.from_cursor_update(args[0]))
        if name == "clientTracking.clientDisconnected":
            return CollaboratorDisconnected(str(args[0]))
        if name == "connectionAccepted":
            return ConnectionAccepted(str(args[1]) if len(args) > 1 else "")
        if name == "connectionRejected":
            return ConnectionRejected(_reason(args[0] if args else None))
        if name == "forceDisconnect":
            return ForceDisconnect(_reason(args[0] if args else None))
        if name == "joinProjectResponse":
            payload = args[0]
            return JoinProjectResponse(
                public_id=str(payload.get("publicId", "")),
                project=ProjectSnapshot.from_dict(payload["project"]),
            )
        if name == "rootDocUpdated":
            return RootDocUpdated(str(args[0]))
        if name == "compilerUpdated":
            return CompilerUpdated(str(args[0]))
    except (IndexError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise ProtocolError(f"Malformed {name} event: {e}") from e

    logger.debug("Ignoring event %s", name)
    return None
