"""Real-time push channel for announcement broadcasts.

One Broadcaster is created at startup and stored on ``app.state``; handlers
only read it afterwards. Delivery is best effort.
"""

import logging
from typing import Any, Set

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from database import to_json

logger = logging.getLogger(__name__)

router = APIRouter()


class Broadcaster:
    def __init__(self):
        self.connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        logger.debug("Client connected (%d open)", len(self.connections))

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        logger.debug("Client disconnected (%d open)", len(self.connections))

    async def broadcast(self, event: str, data: Any) -> int:
        message = jsonable_encoder({"event": event, "data": to_json(data)})
        delivered = 0
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping websocket after failed send: %s", exc)
                self.disconnect(websocket)
        return delivered


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
