import asyncio
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from coordinator import Delivery, RoomCoordinator
from errors import MalformedMessage, ProtocolError
from logging_config import get_logger
from schemas.messages import JoinError, LeaveRoom, SystemNotice, parse_client_message

logger = get_logger(__name__)


class ConnectionGateway:
    """Terminates client WebSockets and executes the coordinator's delivery plans.

    Connections are tracked per process as ``{connection_id: websocket}``. The
    room membership itself lives in the coordinator; the gateway only knows
    which sockets are still open.
    """

    def __init__(self, coordinator: RoomCoordinator):
        self.coordinator = coordinator
        self.connections: Dict[str, WebSocket] = {}

    def new_connection_id(self) -> str:
        return uuid.uuid4().hex

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        connection_id = self.new_connection_id()
        self.connections[connection_id] = websocket
        logger.info(f"WebSocket connection {connection_id} accepted (open connections: {len(self.connections)})")

        message_count = 0
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                data = frame.get("text")
                if data is None:
                    data = frame.get("bytes") or b""
                message_count += 1
                logger.debug(f"Received message #{message_count} from connection {connection_id}")
                if not await self.on_message(connection_id, data):
                    break
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"Error receiving message from connection {connection_id}: {e}", exc_info=True)
        finally:
            await self.on_disconnect(connection_id)
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket {connection_id}: {e}")

    async def on_message(self, connection_id: str, raw: Union[str, bytes]) -> bool:
        """Handle one inbound frame. Returns False once the connection should be closed."""
        try:
            message = parse_client_message(raw)
        except MalformedMessage as e:
            logger.warning(f"Malformed message from connection {connection_id}: {e}")
            if e.kind == "join-room":
                await self.send(connection_id, JoinError(type="invalid-input", room_key="", message=str(e)))
            return True
        except ProtocolError as e:
            logger.warning(f"Dropping message from connection {connection_id}: {e}")
            return True

        plan = self.coordinator.handle(connection_id, message)
        await self.deliver(plan)

        if isinstance(message, LeaveRoom):
            logger.info(f"Connection {connection_id} left its room, closing socket")
            return False
        return True

    async def on_disconnect(self, connection_id: str) -> None:
        # popping the socket makes repeated calls no-ops
        if self.connections.pop(connection_id, None) is None:
            return
        plan = self.coordinator.disconnect(connection_id)
        logger.info(f"Connection {connection_id} closed (open connections: {len(self.connections)})")
        await self.deliver(plan)

    async def send(self, connection_id: str, message: BaseModel) -> bool:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Skipping {getattr(message, 'type', 'message')} to closed connection {connection_id}")
            return False
        try:
            await websocket.send_text(message.model_dump_json())
            return True
        except Exception as e:
            logger.warning(f"Error sending to connection {connection_id}: {e}")
            return False

    async def deliver(self, plan: Iterable[Delivery]) -> None:
        """Send a delivery plan.

        Messages for the same connection go out in plan order; different
        connections are served concurrently so one slow peer holds up nobody else.
        """
        queues: "OrderedDict[str, List[BaseModel]]" = OrderedDict()
        for delivery in plan:
            queues.setdefault(delivery.connection_id, []).append(delivery.message)
        if not queues:
            return
        await asyncio.gather(
            *(self._send_in_order(connection_id, messages) for connection_id, messages in queues.items()),
            return_exceptions=True,
        )
        logger.debug(f"Delivered plan to {len(queues)} connection(s)")

    async def _send_in_order(self, connection_id: str, messages: List[BaseModel]) -> None:
        for message in messages:
            await self.send(connection_id, message)

    async def broadcast_to_room(self, room_key: str, message: BaseModel, excluding: Optional[str] = None) -> int:
        targets = [mid for mid in self.coordinator.member_ids(room_key) if mid != excluding]
        await self.deliver(Delivery(mid, message) for mid in targets)
        return len(targets)

    async def announce_shutdown(self) -> None:
        notice = SystemNotice(message="Server shutting down", timestamp=datetime.now(timezone.utc).isoformat())
        for stats in self.coordinator.registry.snapshot():
            if stats.member_count:
                await self.broadcast_to_room(stats.room_key, notice)
