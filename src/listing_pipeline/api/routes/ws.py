"""WebSocket subscription to real-time pipeline events."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws/{topic}")
async def subscribe(websocket: WebSocket, topic: str):
    """Stream events for one topic (listings, review-queue, user:<id>)."""
    broadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    broadcaster.subscribe(topic, websocket)
    try:
        while True:
            # Client messages are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unsubscribe(topic, websocket)
