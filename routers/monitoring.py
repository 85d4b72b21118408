from datetime import datetime, timezone

from fastapi import APIRouter, Request

from logging_config import get_logger
from schemas.rooms import HealthResponse, StatsResponse

logger = get_logger(__name__)

monitoring_router = APIRouter(tags=["monitoring"])


@monitoring_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    gateway = request.app.state.gateway
    return HealthResponse(
        status="ok",
        rooms=len(gateway.coordinator.registry),
        connections=len(gateway.connections),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@monitoring_router.get("/stats", response_model=StatsResponse)
async def stats(request: Request):
    """
    Read-only view over the room registry.

    Returns every room key with its member count and creation time. Rooms kept
    alive by the empty-room grace period show up with zero members and an
    ``emptied_at`` timestamp.
    """
    coordinator = request.app.state.gateway.coordinator
    rooms = coordinator.registry.snapshot()
    logger.debug(f"Stats requested: {len(rooms)} rooms")
    return StatsResponse(
        total_rooms=len(rooms),
        total_members=sum(room.member_count for room in rooms),
        max_members_per_room=coordinator.max_members,
        rooms=rooms,
    )
