"""
Best-effort broadcast of chat events to connected WebSocket listeners.
"""
from typing import Any, Dict, List, Set, Tuple

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from chatserver.core.logging import get_logger

logger = get_logger(__name__)

NEW_MESSAGE = "newMessage"
STATUS_UPDATE = "statusUpdate"


class RealtimeEvent(BaseModel):
    """Server -> client envelope."""

    type: str  # newMessage | statusUpdate | pong
    data: Dict[str, Any] = {}


class EventBuffer:
    """Collects events raised by synchronous code for a later broadcast."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, event: str, data: Dict[str, Any]) -> None:
        self.events.append((event, data))

    def __len__(self) -> int:
        return len(self.events)


class ConnectionManager:
    """Tracks open sockets; delivery is fire-and-forget."""

    def __init__(self):
        self.active: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active.add(websocket)
        logger.info("Listener connected", extra={"extra_data": {"listeners": len(self.active)}})

    def disconnect(self, websocket: WebSocket) -> None:
        self.active.discard(websocket)
        logger.info("Listener disconnected", extra={"extra_data": {"listeners": len(self.active)}})

    async def send(self, websocket: WebSocket, event: str, data: Dict[str, Any]) -> None:
        payload = RealtimeEvent(type=event, data=jsonable_encoder(data))
        await websocket.send_json(payload.model_dump())

    async def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        """Send to every listener; returns how many received it."""
        delivered = 0
        for websocket in list(self.active):
            try:
                await self.send(websocket, event, data)
                delivered += 1
            except Exception as e:
                # A listener that cannot be reached misses the event
                logger.warning(
                    "Dropping unreachable listener",
                    extra={"extra_data": {"event": event, "error": str(e)}}
                )
                self.active.discard(websocket)
        return delivered

    async def flush(self, buffer: EventBuffer) -> int:
        delivered = 0
        for event, data in buffer.events:
            delivered += await self.broadcast(event, data)
        buffer.events.clear()
        return delivered


manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    """FastAPI dependency returning the process-wide connection manager."""
    return manager
