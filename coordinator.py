from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

from pydantic import BaseModel

from constants import EMPTY_ROOM_GRACE_SECONDS, MAX_ROOM_MEMBERS
from errors import InvalidInput, JoinRejected, NameTaken, RoomFull, StaleTarget, UnauthorizedTarget
from logging_config import get_logger
from registry import Member, Registry, Room
from schemas.messages import (
    AudioEnd,
    AudioStart,
    AudioState,
    AudioStateChanged,
    ChatDelivered,
    JoinError,
    Joined,
    JoinRoom,
    LeaveRoom,
    MemberJoined,
    MemberLeft,
    RelaySignal,
    SendChat,
    SignalDelivered,
)

logger = get_logger(__name__)


class Delivery(NamedTuple):
    connection_id: str
    message: BaseModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomCoordinator:
    """Room membership state machine.

    Every operation mutates the registry under its lock and returns a delivery
    plan: an ordered list of (connection id, message) pairs. Nothing here
    performs I/O, the gateway sends the plan once the lock is released.

    A connection is ``unjoined`` until a successful join, ``joined`` while it
    has an entry in ``_memberships``, and ``left`` after an explicit leave.
    Disconnect forgets the connection entirely.
    """

    def __init__(
        self,
        registry: Optional[Registry] = None,
        max_members: int = MAX_ROOM_MEMBERS,
        empty_room_grace_seconds: float = EMPTY_ROOM_GRACE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry if registry is not None else Registry()
        self.max_members = max_members
        self.empty_room_grace = timedelta(seconds=empty_room_grace_seconds)
        self.clock = clock
        # connection id -> room key; a member id is its connection id
        self._memberships: Dict[str, str] = {}
        self._left: Set[str] = set()

    def handle(self, connection_id: str, message: BaseModel) -> List[Delivery]:
        if isinstance(message, JoinRoom):
            return self.join(connection_id, message.room_key, message.display_name)
        if isinstance(message, RelaySignal):
            return self.relay(connection_id, message.target_member_id, message.type, message.payload)
        if isinstance(message, AudioStart):
            return self.change_presence(connection_id, talking=True)
        if isinstance(message, AudioEnd):
            return self.change_presence(connection_id, talking=False)
        if isinstance(message, SendChat):
            return self.chat(connection_id, message.text)
        if isinstance(message, LeaveRoom):
            return self.leave(connection_id)
        logger.warning(f"Coordinator has no handler for {type(message).__name__} from {connection_id}")
        return []

    def join(self, connection_id: str, room_key: str, display_name: str) -> List[Delivery]:
        room_key = (room_key or "").strip()
        display_name = (display_name or "").strip()
        try:
            return self._join(connection_id, room_key, display_name)
        except JoinRejected as e:
            logger.info(f"Join rejected for {connection_id} in room {room_key!r}: {e}")
            return [Delivery(connection_id, JoinError(type=e.event_type, room_key=e.room_key, message=str(e)))]

    def _join(self, connection_id: str, room_key: str, display_name: str) -> List[Delivery]:
        if not room_key:
            raise InvalidInput("Room key must not be empty", room_key=room_key)
        if not display_name:
            raise InvalidInput("Display name must not be empty", room_key=room_key)

        with self.registry.lock:
            if connection_id in self._left:
                logger.debug(f"Dropping join from {connection_id}: connection already left")
                return []

            room = self.registry.get_locked(room_key)
            if room is not None:
                self._check_admission(room, connection_id, display_name)

            plan: List[Delivery] = []
            if connection_id in self._memberships:
                previous = self._memberships[connection_id]
                logger.info(f"Connection {connection_id} switching from room {previous} to {room_key}")
                plan.extend(self._remove_locked(connection_id))
                room = self.registry.get_locked(room_key)

            now = self.clock()
            if room is None:
                room = self.registry.create_locked(room_key, now)
            elif room.emptied_at is not None:
                # revived during its grace period, counts as a fresh room
                room.created_at = now
                room.emptied_at = None

            member = Member(member_id=connection_id, display_name=display_name, joined_at=now)
            room.members[connection_id] = member
            self._memberships[connection_id] = room_key

            # (a) roster to the joiner strictly before (b) the broadcast it triggered
            plan.append(Delivery(connection_id, Joined(
                room_key=room_key,
                member_id=connection_id,
                max_members=self.max_members,
                roster=room.roster(excluding=connection_id),
            )))
            announcement = MemberJoined(
                member_id=connection_id,
                display_name=display_name,
                roster=room.roster(),
            )
            plan.extend(Delivery(other, announcement) for other in room.others(connection_id))
            member_count = len(room.members)

        logger.info(f"{display_name} ({connection_id}) joined room {room_key} ({member_count}/{self.max_members})")
        return plan

    def _check_admission(self, room: Room, connection_id: str, display_name: str) -> None:
        if room.name_in_use(display_name, excluding=connection_id):
            raise NameTaken(f"Display name '{display_name}' is already taken in this room", room_key=room.room_key)
        if len(room.others(connection_id)) >= self.max_members:
            raise RoomFull(f"Room is full ({self.max_members} members)", room_key=room.room_key)

    def relay(self, connection_id: str, target_member_id: str, kind: str, payload: Any) -> List[Delivery]:
        try:
            return self._relay(connection_id, target_member_id, kind, payload)
        except UnauthorizedTarget as e:
            logger.warning(f"Dropped {kind} from {e.sender_id} to {e.target_id}: {e}")
        except StaleTarget as e:
            logger.debug(f"Dropped {kind} from {e.sender_id} to {e.target_id}: {e}")
        return []

    def _relay(self, connection_id: str, target_member_id: str, kind: str, payload: Any) -> List[Delivery]:
        with self.registry.lock:
            sender_room = self._memberships.get(connection_id)
            if sender_room is None:
                logger.debug(f"Dropping {kind} from unjoined connection {connection_id}")
                return []
            target_room = self._memberships.get(target_member_id)
            if target_room is None:
                raise StaleTarget("target is not in any room", connection_id, target_member_id)
            if target_room != sender_room:
                raise UnauthorizedTarget("target is in a different room", connection_id, target_member_id)

        return [Delivery(target_member_id, SignalDelivered(type=kind, sender_member_id=connection_id, payload=payload))]

    def change_presence(self, connection_id: str, talking: bool) -> List[Delivery]:
        with self.registry.lock:
            found = self._member_locked(connection_id)
            if found is None:
                logger.debug(f"Dropping presence change from unjoined connection {connection_id}")
                return []
            room, member = found
            member.audio_state = AudioState.TALKING if talking else AudioState.SILENT
            event = AudioStateChanged(
                type="audio-start" if talking else "audio-end",
                member_id=connection_id,
                display_name=member.display_name,
            )
            plan = [Delivery(other, event) for other in room.others(connection_id)]

        logger.debug(f"{member.display_name} ({connection_id}) is {member.audio_state.value} in room {room.room_key}")
        return plan

    def chat(self, connection_id: str, text: str) -> List[Delivery]:
        text = (text or "").strip()
        with self.registry.lock:
            found = self._member_locked(connection_id)
            if found is None:
                logger.debug(f"Dropping chat from unjoined connection {connection_id}")
                return []
            if not text:
                return []
            room, member = found
            event = ChatDelivered(
                sender_id=connection_id,
                sender_name=member.display_name,
                text=text,
                timestamp=self.clock().isoformat(),
            )
            # sender included, clients render their own chat from the echo
            plan = [Delivery(mid, event) for mid in room.members]

        logger.debug(f"Chat from {connection_id} in room {room.room_key} to {len(plan)} members")
        return plan

    def leave(self, connection_id: str) -> List[Delivery]:
        """Explicit leave. The connection is terminal afterwards."""
        with self.registry.lock:
            plan = self._remove_locked(connection_id)
            self._left.add(connection_id)
        return plan

    def disconnect(self, connection_id: str) -> List[Delivery]:
        with self.registry.lock:
            plan = self._remove_locked(connection_id)
            self._left.discard(connection_id)
        return plan

    def reap_empty_rooms(self) -> List[str]:
        """Remove rooms that stayed empty for the whole grace period."""
        now = self.clock()
        reaped = []
        with self.registry.lock:
            for room in self.registry.rooms_locked():
                if room.members or room.emptied_at is None:
                    continue
                if now - room.emptied_at >= self.empty_room_grace:
                    self.registry.remove_locked(room.room_key)
                    reaped.append(room.room_key)
        if reaped:
            logger.info(f"Reaped {len(reaped)} empty room(s): {reaped}")
        return reaped

    def room_of(self, connection_id: str) -> Optional[str]:
        with self.registry.lock:
            return self._memberships.get(connection_id)

    def member_ids(self, room_key: str) -> List[str]:
        return self.registry.member_ids(room_key)

    def _member_locked(self, connection_id: str):
        room_key = self._memberships.get(connection_id)
        if room_key is None:
            return None
        room = self.registry.get_locked(room_key)
        member = room.members.get(connection_id) if room else None
        if member is None:
            return None
        return room, member

    def _remove_locked(self, connection_id: str) -> List[Delivery]:
        room_key = self._memberships.pop(connection_id, None)
        if room_key is None:
            return []
        room = self.registry.get_locked(room_key)
        if room is None:
            return []
        member = room.members.pop(connection_id, None)
        if member is None:
            return []

        logger.info(f"{member.display_name} ({connection_id}) left room {room_key}")
        event = MemberLeft(member_id=connection_id, display_name=member.display_name, roster=room.roster())
        plan = [Delivery(mid, event) for mid in room.members]

        if not room.members:
            if self.empty_room_grace.total_seconds() <= 0:
                self.registry.remove_locked(room_key)
            else:
                room.emptied_at = self.clock()
                logger.info(f"Room {room_key} is empty, keeping it for {self.empty_room_grace.total_seconds():.0f}s")
        return plan
