"""Helpers for delivering payloads to websocket connections."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


async def fan_out(websockets: Iterable[WebSocket], payload: dict[str, Any]) -> int:
    """Send ``payload`` to every socket in order; return how many accepted it."""

    delivered = 0
    for websocket in websockets:
        if await safe_send_json(websocket, payload):
            delivered += 1
    return delivered
