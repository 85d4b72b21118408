import json

import pytest

from errors import MalformedMessage, UnknownMessageKind
from schemas.messages import (
    AudioStart,
    JoinRoom,
    LeaveRoom,
    RelaySignal,
    SendChat,
    parse_client_message,
)


def test_parse_join_room():
    message = parse_client_message(json.dumps({"type": "join-room", "room_key": "42", "display_name": "alice"}))
    assert isinstance(message, JoinRoom)
    assert message.room_key == "42"
    assert message.display_name == "alice"


def test_join_room_fields_default_to_empty():
    message = parse_client_message('{"type": "join-room"}')
    assert message.room_key == ""
    assert message.display_name == ""


@pytest.mark.parametrize("kind", ["offer", "answer", "ice-candidate"])
def test_parse_signal_keeps_payload_opaque(kind):
    payload = {"sdp": "v=0\r\n", "nested": [1, {"x": None}]}
    message = parse_client_message(json.dumps({"type": kind, "target_member_id": "abc", "payload": payload}))
    assert isinstance(message, RelaySignal)
    assert message.type == kind
    assert message.payload == payload


def test_parse_simple_kinds():
    assert isinstance(parse_client_message('{"type": "audio-start"}'), AudioStart)
    assert isinstance(parse_client_message('{"type": "leave-room"}'), LeaveRoom)
    assert isinstance(parse_client_message('{"type": "chat-message", "text": "hi"}'), SendChat)


def test_unknown_kind():
    with pytest.raises(UnknownMessageKind):
        parse_client_message('{"type": "dance"}')
    with pytest.raises(UnknownMessageKind):
        parse_client_message('{"text": "no type"}')


def test_malformed_frames():
    with pytest.raises(MalformedMessage):
        parse_client_message("not json")
    with pytest.raises(MalformedMessage):
        parse_client_message("[1, 2]")


def test_malformed_message_reports_kind():
    with pytest.raises(MalformedMessage) as excinfo:
        parse_client_message('{"type": "join-room", "room_key": 42}')
    assert excinfo.value.kind == "join-room"

    with pytest.raises(MalformedMessage) as excinfo:
        parse_client_message('{"type": "offer"}')
    assert excinfo.value.kind == "offer"


def test_parse_bytes_frames():
    assert isinstance(parse_client_message(b'{"type": "audio-start"}'), AudioStart)
    with pytest.raises(MalformedMessage):
        parse_client_message(b"\xff\xfe\xfd")
