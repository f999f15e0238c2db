from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.flowbatch.domain.events.batch_event import BatchEvent

router = APIRouter(tags=["ws"])


class BatchConnectionManager:
    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)

    async def broadcast(self, payload: dict[str, object]) -> None:
        for websocket in list(self._connections):
            try:
                await websocket.send_json(payload)
            except RuntimeError:
                self.disconnect(websocket)


class WebSocketEventForwarder:
    """Event router subscriber that pushes every batch event to connected clients."""

    def __init__(self, manager: BatchConnectionManager) -> None:
        self._manager = manager

    async def __call__(self, event: BatchEvent) -> None:
        await self._manager.broadcast(event.model_dump(mode="json"))


connection_manager = BatchConnectionManager()


@router.websocket("/ws/batch")
async def batch_updates(websocket: WebSocket) -> None:
    await connection_manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        connection_manager.disconnect(websocket)
