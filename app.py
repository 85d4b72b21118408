import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from constants import (
    CORS_ALLOW_ORIGINS,
    EMPTY_ROOM_GRACE_SECONDS,
    LOG_FILE,
    LOG_LEVEL,
    MAX_ROOM_MEMBERS,
    ROOM_REAPER_INTERVAL_SECONDS,
)
from coordinator import RoomCoordinator
from gateway import ConnectionGateway
from logging_config import get_logger, setup_logging
from routers.monitoring import monitoring_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def reap_empty_rooms_forever(coordinator: RoomCoordinator, interval: float):
    """Background task removing rooms whose grace period has run out."""
    logger.info(f"Starting empty room reaper (interval {interval}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                coordinator.reap_empty_rooms()
            except Exception as e:
                logger.error(f"Error reaping empty rooms: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Empty room reaper cancelled")
        raise


def create_app(
    coordinator: Optional[RoomCoordinator] = None,
    reaper_interval: float = ROOM_REAPER_INTERVAL_SECONDS,
) -> FastAPI:
    coordinator = coordinator or RoomCoordinator(
        max_members=MAX_ROOM_MEMBERS,
        empty_room_grace_seconds=EMPTY_ROOM_GRACE_SECONDS,
    )
    gateway = ConnectionGateway(coordinator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = None
        if coordinator.empty_room_grace.total_seconds() > 0:
            reaper = asyncio.create_task(reap_empty_rooms_forever(coordinator, reaper_interval))
        try:
            yield
        finally:
            if reaper is not None:
                reaper.cancel()
                try:
                    await reaper
                except asyncio.CancelledError:
                    pass
            await gateway.announce_shutdown()
            logger.info("Room relay shut down")

    app = FastAPI(title="Room Relay", lifespan=lifespan)
    app.state.gateway = gateway

    # Configure CORS to allow the client bundle to be served from anywhere
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitoring_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Signaling channel. One socket per client; the first useful frame is ``join-room``."""
        await gateway.serve(websocket)

    logger.info(f"FastAPI application initialized (max {coordinator.max_members} members per room)")
    return app


app = create_app()
