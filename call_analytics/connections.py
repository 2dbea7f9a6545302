"""WebSocket transport for the presence engine.

Frames are JSON objects ``{"event": name, "data": {...}}`` in both
directions. Connections are addressed by an opaque id handed out on
``register``.
"""

import uuid
from typing import Optional

from fastapi import WebSocket

from call_analytics.logging_config import get_logger
from call_analytics.metrics import connected_clients

logger = get_logger(__name__)


class ConnectionHub:
    """Open sockets by connection id."""

    def __init__(self):
        self._sockets: dict[str, WebSocket] = {}

    def register(self, websocket: WebSocket, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or uuid.uuid4().hex
        self._sockets[connection_id] = websocket
        connected_clients.set(len(self._sockets))
        logger.info("client_connected", connection_id=connection_id, clients=len(self._sockets))
        return connection_id

    def unregister(self, connection_id: str) -> None:
        if self._sockets.pop(connection_id, None) is not None:
            connected_clients.set(len(self._sockets))
            logger.info("client_disconnected", connection_id=connection_id, clients=len(self._sockets))

    async def send(self, connection_id: str, event: str, data: dict) -> bool:
        """Send one frame. False when the connection is gone or the write fails."""
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False

        try:
            await websocket.send_json({"event": event, "data": data})
        except Exception as e:
            logger.warning("socket_send_failed", connection_id=connection_id, event=event, error=str(e))
            self.unregister(connection_id)
            return False
        return True

    async def broadcast(self, event: str, data: dict) -> int:
        """Send to every open connection; dead sockets are dropped. Returns successful sends."""
        sent = 0
        for connection_id in list(self._sockets):
            if await self.send(connection_id, event, data):
                sent += 1
        return sent

    def count(self) -> int:
        return len(self._sockets)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets
