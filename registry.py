import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from logging_config import get_logger
from schemas.messages import AudioState, RosterEntry
from schemas.rooms import RoomStats

logger = get_logger(__name__)


@dataclass
class Member:
    member_id: str
    display_name: str
    joined_at: datetime
    audio_state: AudioState = AudioState.SILENT

    def to_roster_entry(self) -> RosterEntry:
        return RosterEntry(
            member_id=self.member_id,
            display_name=self.display_name,
            audio_state=self.audio_state,
            joined_at=self.joined_at.isoformat(),
        )


@dataclass
class Room:
    room_key: str
    created_at: datetime
    members: Dict[str, Member] = field(default_factory=dict)
    emptied_at: Optional[datetime] = None

    def roster(self, excluding: Optional[str] = None) -> List[RosterEntry]:
        return [m.to_roster_entry() for m in self.members.values() if m.member_id != excluding]

    def others(self, member_id: str) -> List[str]:
        return [mid for mid in self.members if mid != member_id]

    def name_in_use(self, display_name: str, excluding: Optional[str] = None) -> bool:
        # exact, case-sensitive match
        return any(
            m.display_name == display_name for m in self.members.values() if m.member_id != excluding
        )

    def to_stats(self) -> RoomStats:
        return RoomStats(
            room_key=self.room_key,
            member_count=len(self.members),
            created_at=self.created_at.isoformat(),
            emptied_at=self.emptied_at.isoformat() if self.emptied_at else None,
        )


class Registry:
    """Process-wide mapping of room key -> Room.

    Every read and write goes through ``lock``. The ``*_locked`` helpers assume
    the caller already holds it; the public readers take it themselves.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}

    def get_locked(self, room_key: str) -> Optional[Room]:
        return self._rooms.get(room_key)

    def create_locked(self, room_key: str, now: datetime) -> Room:
        room = Room(room_key=room_key, created_at=now)
        self._rooms[room_key] = room
        logger.info(f"Room {room_key} created")
        return room

    def remove_locked(self, room_key: str) -> Optional[Room]:
        room = self._rooms.pop(room_key, None)
        if room is not None:
            logger.info(f"Room {room_key} removed from registry")
        return room

    def rooms_locked(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __contains__(self, room_key: str) -> bool:
        with self.lock:
            return room_key in self._rooms

    def __len__(self) -> int:
        with self.lock:
            return len(self._rooms)

    def member_ids(self, room_key: str) -> List[str]:
        with self.lock:
            room = self._rooms.get(room_key)
            return list(room.members) if room else []

    def snapshot(self) -> List[RoomStats]:
        with self.lock:
            return [room.to_stats() for room in self._rooms.values()]
