from typing import Optional


class RoomError(Exception):
    """Base class for every failure the room protocol can produce."""


class JoinRejected(RoomError):
    event_type = "invalid-input"

    def __init__(self, message: str, room_key: str = ""):
        super().__init__(message)
        self.room_key = room_key


class InvalidInput(JoinRejected):
    event_type = "invalid-input"


class RoomFull(JoinRejected):
    event_type = "room-full"


class NameTaken(JoinRejected):
    event_type = "name-taken"


class RelayDropped(RoomError):
    def __init__(self, message: str, sender_id: str, target_id: str):
        super().__init__(message)
        self.sender_id = sender_id
        self.target_id = target_id


class UnauthorizedTarget(RelayDropped):
    """Target is connected but belongs to a different room than the sender."""


class StaleTarget(RelayDropped):
    """Target is no longer a member of any room."""


class ProtocolError(RoomError):
    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind


class UnknownMessageKind(ProtocolError):
    pass


class MalformedMessage(ProtocolError):
    pass
