"""
WebSocket endpoint for real-time chat events.
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatserver.api.metrics import record_event
from chatserver.core.logging import get_logger
from chatserver.services.realtime import ConnectionManager, EventBuffer, manager

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])


async def relay(connections: ConnectionManager, buffer: EventBuffer) -> int:
    """Broadcast buffered events; returns the number of deliveries."""
    for event, _ in buffer.events:
        record_event(event)
    return await connections.flush(buffer)


@router.websocket("/ws")
async def events(websocket: WebSocket):
    """
    Push ``newMessage`` and ``statusUpdate`` events to the client.

    The client may send ``ping``; anything else is ignored.
    """
    await manager.connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await manager.send(websocket, "pong", {})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
