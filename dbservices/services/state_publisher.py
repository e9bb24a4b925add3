"""WebSocket fan-out of the tracked-services state to UI clients.

The reconciler publishes the full services list after every pass; this
publisher forwards it as JSON text to every connected WebSocket. Clients
whose send fails are dropped.

Message shape:
    {"id": "new-services-state", "body": [{...tracked service...}, ...]}
"""

from __future__ import annotations

import contextlib
import json
from typing import Any

from fastapi import WebSocket

from dbservices.core.logging import get_logger

logger = get_logger(__name__)


class WebSocketStatePublisher:
    """Publishes messages to every connected WebSocket client."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a WebSocket."""
        await websocket.accept()
        self._connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        with contextlib.suppress(Exception):
            await websocket.close()
        logger.info(f"WebSocket disconnected. Total connections: {len(self._connections)}")

    async def publish(self, message: dict[str, Any]) -> int:
        """Send a message to all clients.

        Args:
            message: JSON-serializable message

        Returns:
            Number of clients the message was delivered to
        """
        if not self._connections:
            return 0

        text = json.dumps(message)
        delivered = 0
        for ws in list(self._connections):
            if await self._send(ws, text):
                delivered += 1
        return delivered

    async def send_to(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        """Send a message to a single client."""
        return await self._send(websocket, json.dumps(message))

    async def _send(self, websocket: WebSocket, text: str) -> bool:
        try:
            await websocket.send_text(text)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to WebSocket client: {e}")
            await self.disconnect(websocket)
            return False

    async def close(self) -> None:
        for ws in list(self._connections):
            await self.disconnect(ws)
