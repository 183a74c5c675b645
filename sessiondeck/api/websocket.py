import asyncio
import logging
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from sessiondeck.models.sessions import Session

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected WebSocket clients and fans out session changes."""

    def __init__(self) -> None:
        self.active_connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections.append(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self.active_connections:
                self.active_connections.remove(websocket)

    async def send_personal_message(self, message: dict[str, Any], websocket: WebSocket) -> None:
        """Send a message to a specific WebSocket connection."""
        try:
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Failed to send personal message: {e}")

    async def broadcast_all(self, message: dict[str, Any]) -> None:
        """Send a message to every connected client, dropping ones that fail."""
        async with self._lock:
            connections = self.active_connections.copy()

        if not connections:
            return

        failed_connections: list[WebSocket] = []
        for connection in connections:
            try:
                if connection.client_state == WebSocketState.CONNECTED:
                    await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to broadcast to WebSocket: {e}")
                failed_connections.append(connection)

        if failed_connections:
            async with self._lock:
                for conn in failed_connections:
                    if conn in self.active_connections:
                        self.active_connections.remove(conn)

    async def broadcast_session(self, session: Session) -> None:
        """Session change callback for the indexer and the pane mapper."""
        await self.broadcast_all(
            {
                "type": "session_updated",
                "session": session.model_dump(mode="json", by_alias=True),
            }
        )

    async def broadcast_session_deleted(self, session_id: str) -> None:
        await self.broadcast_all({"type": "session_deleted", "sessionId": session_id})


manager = ConnectionManager()
