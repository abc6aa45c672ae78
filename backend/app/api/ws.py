"""WebSocket endpoint for real-time group chat."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

import anyio
from fastapi import APIRouter, Depends, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_session_factory
from app.schemas import (
    INBOUND_EVENTS,
    FocusPrivateChatEvent,
    InboundEvent,
    JoinEvent,
    MarkReadEvent,
    MessageEvent,
    PrivateMessageEvent,
    StopTypingEvent,
    TypingEvent,
)
from app.services.identities import ResolvedIdentity, resolve_identity
from huddle.realtime import BroadcastRouter, ConnectionId, ConnectionState, get_router
from huddle.realtime.transport import safe_send_json

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            idle_long_enough = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if idle_long_enough:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


def _describe_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        message = str(error.get("msg", "Invalid value"))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid payload"


def _resolve_identity_sync(
    session_factory: Callable[[], Session], name: str, credential: str | None
) -> ResolvedIdentity:
    with session_factory() as db:
        return resolve_identity(db, name, credential)


async def _dispatch(
    relay: BroadcastRouter,
    connection_id: ConnectionId,
    event: InboundEvent,
    session_factory: Callable[[], Session],
) -> None:
    if isinstance(event, JoinEvent):
        if relay.state_of(connection_id) is not ConnectionState.CONNECTED:
            logger.debug("Ignoring repeated join on connection %s", connection_id)
            return
        resolved = await anyio.to_thread.run_sync(
            _resolve_identity_sync, session_factory, event.identity, event.credential
        )
        await relay.join(connection_id, resolved.label, owner_ref=resolved.user_id)
    elif isinstance(event, MessageEvent):
        await relay.send_message(connection_id, event.body)
    elif isinstance(event, PrivateMessageEvent):
        await relay.send_private_message(connection_id, event.to, event.body)
    elif isinstance(event, TypingEvent):
        await relay.start_typing(connection_id)
    elif isinstance(event, StopTypingEvent):
        await relay.stop_typing(connection_id)
    elif isinstance(event, MarkReadEvent):
        await relay.mark_read(connection_id, event.message_ids)
    elif isinstance(event, FocusPrivateChatEvent):
        await relay.focus_private_chat(connection_id, event.other_identity)


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> None:
    """Handle one chat client: join, messages, typing, receipts and private chats."""

    relay = get_router()
    connection_id = ConnectionId(uuid.uuid4().hex)

    await websocket.accept()
    await relay.connect(connection_id, websocket)

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid message format")
                continue

            if not isinstance(payload, dict):
                await _send_error(websocket, "Message payload must be a JSON object")
                continue

            payload_type = payload.get("type")
            if payload_type == "ping":
                await safe_send_json(websocket, {"type": "pong"})
                continue
            if payload_type == "pong":
                continue

            schema = INBOUND_EVENTS.get(payload_type) if isinstance(payload_type, str) else None
            if schema is None:
                await _send_error(websocket, "Unsupported payload type")
                continue

            try:
                event = schema.model_validate(payload)
            except ValidationError as exc:
                await _send_error(websocket, _describe_validation_error(exc))
                continue

            await _dispatch(relay, connection_id, event, session_factory)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(connection_id)
