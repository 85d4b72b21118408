import json
from enum import Enum
from typing import Any, Annotated, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from errors import MalformedMessage, UnknownMessageKind

SIGNAL_KINDS = ("offer", "answer", "ice-candidate")


class AudioState(str, Enum):
    SILENT = "silent"
    TALKING = "talking"


class JoinRoom(BaseModel):
    type: Literal["join-room"]
    room_key: str = ""
    display_name: str = ""


class RelaySignal(BaseModel):
    type: Literal["offer", "answer", "ice-candidate"]
    target_member_id: str
    # opaque SDP / ICE blob, never inspected
    payload: Any = None


class AudioStart(BaseModel):
    type: Literal["audio-start"]


class AudioEnd(BaseModel):
    type: Literal["audio-end"]


class SendChat(BaseModel):
    type: Literal["chat-message"]
    text: str


class LeaveRoom(BaseModel):
    type: Literal["leave-room"]


ClientMessage = Annotated[
    Union[JoinRoom, RelaySignal, AudioStart, AudioEnd, SendChat, LeaveRoom],
    Field(discriminator="type"),
]

CLIENT_MESSAGE_KINDS = frozenset(
    ["join-room", "audio-start", "audio-end", "chat-message", "leave-room", *SIGNAL_KINDS]
)

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]):
    """Decode one inbound text frame into a typed client message.

    Raises UnknownMessageKind for frames whose ``type`` is missing or not part
    of the protocol, and MalformedMessage for anything else that fails to decode.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Frame is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise MalformedMessage("Frame must be a JSON object")

    kind = data.get("type")
    if kind not in CLIENT_MESSAGE_KINDS:
        raise UnknownMessageKind(f"Unknown message kind: {kind!r}", kind=kind if isinstance(kind, str) else None)

    try:
        return _client_message_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid {kind} message: {e.error_count()} validation error(s)", kind=kind)


class RosterEntry(BaseModel):
    member_id: str
    display_name: str
    audio_state: AudioState
    joined_at: str


class Joined(BaseModel):
    type: Literal["joined"] = "joined"
    room_key: str
    member_id: str
    max_members: int
    # everyone already in the room, excluding the receiver
    roster: List[RosterEntry]


class JoinError(BaseModel):
    type: Literal["room-full", "name-taken", "invalid-input"]
    room_key: str
    message: str


class MemberJoined(BaseModel):
    type: Literal["member-joined"] = "member-joined"
    member_id: str
    display_name: str
    roster: List[RosterEntry]


class MemberLeft(BaseModel):
    type: Literal["member-left"] = "member-left"
    member_id: str
    display_name: str
    roster: List[RosterEntry]


class SignalDelivered(BaseModel):
    type: Literal["offer", "answer", "ice-candidate"]
    sender_member_id: str
    payload: Any = None


class AudioStateChanged(BaseModel):
    type: Literal["audio-start", "audio-end"]
    member_id: str
    display_name: str


class ChatDelivered(BaseModel):
    type: Literal["chat-message"] = "chat-message"
    sender_id: str
    sender_name: str
    text: str
    timestamp: str


class SystemNotice(BaseModel):
    type: Literal["system"] = "system"
    message: str
    timestamp: str
