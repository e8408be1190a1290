"""
WebSocket Hub - Delivers room events over FastAPI WebSockets.

Each room keeps a set of open sockets. Messages are JSON objects of the
form {"type": ..., "payload": ...}. A socket that fails to receive is
dropped from its room.
"""

from __future__ import annotations
from typing import Any, TYPE_CHECKING
import logging

from .broadcaster import Broadcaster
from .types import EventType

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketHub(Broadcaster):

    def __init__(self):
        self._connections: dict[str, list[WebSocket]] = {}

    def register(self, room_id: str, websocket: WebSocket):
        self._connections.setdefault(room_id, []).append(websocket)

    def unregister(self, room_id: str, websocket: WebSocket):
        sockets = self._connections.get(room_id)
        if not sockets:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self._connections[room_id]

    def connection_count(self, room_id: str) -> int:
        return len(self._connections.get(room_id, []))

    async def publish(self, room_id: str, event_type: EventType, payload: dict[str, Any]):
        await self.broadcast(room_id, {"type": event_type.value, "payload": payload})

    async def broadcast(self, room_id: str, message: dict[str, Any]):
        """Broadcast a message to all WebSocket connections for a room."""
        dead_connections = []
        for ws in list(self._connections.get(room_id, [])):
            try:
                await ws.send_json(message)
            except Exception:
                dead_connections.append(ws)
        for ws in dead_connections:
            logger.debug("Dropping dead connection in room %s", room_id)
            self.unregister(room_id, ws)
