"""Tests for the real-time wire protocol."""

from __future__ import annotations

import json

import pytest

from leafsync.client.protocol import (
    CollaboratorDisconnected,
    CollaboratorUpdated,
    ConnectionAccepted,
    ConnectionRejected,
    DocumentChanged,
    DocumentUpdate,
    EntityCreated,
    EntityMoved,
    EntityRemoved,
    EntityRenamed,
    ForceDisconnect,
    JoinedDocument,
    JoinProjectResponse,
    OtOp,
    Packet,
    PacketType,
    ProjectSnapshot,
    ProtocolError,
    RootDocUpdated,
    decode_ack,
    decode_event,
    event_packet,
    parse_event,
)
from leafsync.core.types import EntityKind

PROJECT = {
    "_id": "p1",
    "name": "Thesis",
    "rootDoc_id": "d1",
    "compiler": "pdflatex",
    "rootFolder": [
        {
            "_id": "root",
            "name": "rootFolder",
            "docs": [{"_id": "d1", "name": "main.tex"}],
            "fileRefs": [{"_id": "f1", "name": "logo.png"}],
            "folders": [
                {
                    "_id": "fo1",
                    "name": "chapters",
                    "docs": [{"_id": "d2", "name": "intro.tex"}],
                    "fileRefs": [],
                    "folders": [],
                }
            ],
        }
    ],
}


class TestPacket:
    """Tests for Socket.IO v0.9 frames."""

    def test_decode_event(self) -> None:
        packet = Packet.decode('5:::{"name":"removeEntity","args":["e1"]}')
        assert packet.type == PacketType.EVENT
        assert packet.id == ""
        assert packet.data == '{"name":"removeEntity","args":["e1"]}'

    def test_decode_keeps_colons_in_data(self) -> None:
        """Only the first three colons separate fields."""
        packet = Packet.decode('5:::{"name":"x","args":["a:b:c"]}')
        assert decode_event(packet) == ("x", ["a:b:c"])

    def test_decode_bare_heartbeat(self) -> None:
        packet = Packet.decode("2::")
        assert packet.type == PacketType.HEARTBEAT
        assert packet.data == ""

    def test_decode_invalid_type(self) -> None:
        with pytest.raises(ProtocolError):
            Packet.decode("x:::data")

    def test_encode_without_data(self) -> None:
        assert Packet(PacketType.HEARTBEAT).encode() == "2::"

    def test_event_packet_with_ack(self) -> None:
        packet = event_packet("joinDoc", ["d1", {"encodeRanges": True}], ack_id=3)
        raw = packet.encode()
        assert raw.startswith("5:3+::")
        assert packet.wants_ack
        assert json.loads(raw[len("5:3+::"):]) == {
            "name": "joinDoc",
            "args": ["d1", {"encodeRanges": True}],
        }

    def test_event_packet_without_ack(self) -> None:
        packet = event_packet("clientTracking.updatePosition", [{"row": 1}])
        assert packet.encode().startswith("5:::")
        assert not packet.wants_ack

    def test_decode_ack(self) -> None:
        packet = Packet.decode('6:::4+[null,["line"],12]')
        assert decode_ack(packet) == (4, [None, ["line"], 12])

    def test_decode_ack_without_args(self) -> None:
        assert decode_ack(Packet.decode("6:::7")) == (7, [])

    def test_decode_ack_invalid_id(self) -> None:
        with pytest.raises(ProtocolError):
            decode_ack(Packet.decode("6:::x+[]"))

    def test_decode_event_without_name(self) -> None:
        with pytest.raises(ProtocolError):
            decode_event(Packet.decode('5:::{"args":[]}'))


class TestWireRecords:
    """Tests for wire record conversion."""

    def test_ot_op_round_trip_omits_absent_fields(self) -> None:
        op = OtOp(p=3, i="abc")
        assert op.to_dict() == {"p": 3, "i": "abc"}
        assert OtOp.from_dict({"p": 0, "d": "x"}) == OtOp(p=0, d="x")

    def test_document_update_from_dict(self) -> None:
        update = DocumentUpdate.from_dict(
            {"doc": "d1", "op": [{"p": 0, "i": "hi"}], "v": 7, "lastV": 6, "meta": {"user_id": "u"}}
        )
        assert update.doc == "d1"
        assert update.ops == [OtOp(p=0, i="hi")]
        assert update.version == 7
        assert update.last_version == 6

    def test_document_update_to_dict(self) -> None:
        update = DocumentUpdate(doc="d1", ops=[OtOp(p=0, d="a")], version=4)
        assert update.to_dict() == {"doc": "d1", "op": [{"p": 0, "d": "a"}], "v": 4}

    def test_project_snapshot(self) -> None:
        snapshot = ProjectSnapshot.from_dict(PROJECT)
        assert snapshot.name == "Thesis"
        assert snapshot.root_doc_id == "d1"
        assert snapshot.root_folder is not None
        assert snapshot.root_folder.id == "root"
        assert [d.name for d in snapshot.root_folder.docs] == ["main.tex"]
        assert snapshot.root_folder.file_refs[0].kind == EntityKind.FILE
        assert snapshot.root_folder.folders[0].docs[0].id == "d2"

    def test_joined_document_text(self) -> None:
        assert JoinedDocument(lines=["a", "b"], version=1).text == "a\nb"


class TestParseEvent:
    """Tests for typed message decoding."""

    @pytest.mark.parametrize(
        "name, kind",
        [
            ("reciveNewDoc", EntityKind.DOC),
            ("reciveNewFile", EntityKind.FILE),
            ("reciveNewFolder", EntityKind.FOLDER),
        ],
    )
    def test_created(self, name: str, kind: EntityKind) -> None:
        message = parse_event(name, ["fo1", {"_id": "e1", "name": "x.tex"}])
        assert message == EntityCreated("fo1", kind, "e1", "x.tex")

    def test_structural_events(self) -> None:
        assert parse_event("reciveEntityRename", ["e1", "b.tex"]) == EntityRenamed("e1", "b.tex")
        assert parse_event("removeEntity", ["e1"]) == EntityRemoved("e1")
        assert parse_event("reciveEntityMove", ["e1", "fo2"]) == EntityMoved("e1", "fo2")

    def test_ot_update(self) -> None:
        message = parse_event("otUpdateApplied", [{"doc": "d1", "op": [{"p": 0, "i": "x"}], "v": 2}])
        assert isinstance(message, DocumentChanged)
        assert message.update.ops == [OtOp(p=0, i="x")]

    def test_collaborators(self) -> None:
        updated = parse_event(
            "clientTracking.clientUpdated",
            [{"id": "c1", "user_id": "u1", "name": "Ada", "doc_id": "d1", "row": 3, "column": 4}],
        )
        assert isinstance(updated, CollaboratorUpdated)
        assert updated.user.client_id == "c1"
        assert updated.user.row == 3
        assert parse_event("clientTracking.clientDisconnected", ["c1"]) == CollaboratorDisconnected("c1")

    def test_connection_events(self) -> None:
        assert parse_event("connectionAccepted", [None, "pub1"]) == ConnectionAccepted("pub1")
        assert parse_event("connectionRejected", [{"message": "nope"}]) == ConnectionRejected("nope")
        assert parse_event("forceDisconnect", ["bye"]) == ForceDisconnect("bye")

    def test_join_project_response(self) -> None:
        message = parse_event("joinProjectResponse", [{"publicId": "pub", "project": PROJECT}])
        assert isinstance(message, JoinProjectResponse)
        assert message.public_id == "pub"
        assert message.project.project_id == "p1"

    def test_root_doc_updated(self) -> None:
        assert parse_event("rootDocUpdated", ["d2"]) == RootDocUpdated("d2")

    def test_unknown_event(self) -> None:
        assert parse_event("someFutureEvent", [1, 2]) is None

    def test_malformed_payload(self) -> None:
        with pytest.raises(ProtocolError):
            parse_event("reciveNewDoc", ["fo1"])
