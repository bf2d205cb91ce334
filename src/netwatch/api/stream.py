"""Live device update stream over WebSocket."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from netwatch.notifier.broadcaster import ChangeNotifier, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    async for event in sub:
        await websocket.send_json(event.model_dump(mode="json"))


async def _drain(websocket: WebSocket) -> None:
    # Clients never send anything meaningful; reading detects disconnects.
    while True:
        await websocket.receive_text()


@router.websocket("/ws/updates")
async def device_updates(websocket: WebSocket) -> None:
    notifier: ChangeNotifier = websocket.app.state.notifier
    # Subscribe before accepting so nothing published after the handshake is missed.
    sub = notifier.subscribe()
    try:
        await websocket.accept()
    except Exception:
        sub.close()
        raise
    tasks = [
        asyncio.create_task(_forward(websocket, sub)),
        asyncio.create_task(_drain(websocket)),
    ]
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Update stream closed with error: %s", exc)
    finally:
        for task in tasks:
            task.cancel()
        sub.close()
