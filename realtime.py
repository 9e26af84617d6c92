"""
Live updates for connected clients.

Clients open a websocket on ``/ws``; after a rating or a reading event the
refreshed book is pushed to every connection as
``{"event": <name>, "data": <book>}``. Delivery is best effort: a connection
that fails to receive is dropped.
"""
import logging
from typing import Any, Set

from fastapi import Request, WebSocket

logger = logging.getLogger(__name__)

RATING_UPDATED = "rating_updated"
READERS_COUNT_UPDATED = "readers_count_updated"


class ConnectionManager:
    def __init__(self):
        self.connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        self.connections.add(websocket)
        await websocket.accept()
        logger.info("Client connected (%d open)", len(self.connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        logger.info("Client disconnected (%d open)", len(self.connections))

    async def broadcast(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning("Dropping connection after failed send of %s: %s", event, e)
                self.connections.discard(websocket)
        logger.info("Emitted %s to %d client(s)", event, len(self.connections))


def get_notifier(request: Request) -> ConnectionManager:
    return request.app.state.notifier
