from pydantic import BaseModel
from typing import Optional


class RoomStats(BaseModel):
    room_key: str
    member_count: int
    created_at: str
    # set while an empty room waits out its grace period
    emptied_at: Optional[str] = None


class StatsResponse(BaseModel):
    total_rooms: int
    total_members: int
    max_members_per_room: int
    rooms: list[RoomStats]


class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: int
    timestamp: str
