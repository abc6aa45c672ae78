"""Broadcast router: applies inbound chat events and fans out the results."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Sequence

import anyio
from fastapi.websockets import WebSocket

from app.monitoring.metrics import (
    private_chats_expired_total,
    realtime_connections,
    realtime_events_total,
    realtime_online_identities,
    realtime_persistence_failures_total,
)

from . import events
from .connections import ConnectionId, Identity, OwnerRef
from .errors import PersistenceError
from .private_chats import PrivatePair
from .state import ConnectionState, RuntimeState
from .storage import MessageStore, PersistedRecord
from .transport import fan_out

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RelayConfig:
    """Tunables consumed by the router."""

    history_limit: int = 50
    private_chat_inactivity_seconds: float = 60.0


class BroadcastRouter:
    """Single entry point for every inbound event.

    Each operation acquires the state lock for its whole duration, including
    storage calls and outbound sends, so broadcasts leave in the order the
    events were processed.
    """

    def __init__(
        self,
        store: MessageStore,
        *,
        config: RelayConfig | None = None,
        state: RuntimeState | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config or RelayConfig()
        self._state = state or RuntimeState()
        self._clock = clock

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def config(self) -> RelayConfig:
        return self._config

    def state_of(self, connection_id: ConnectionId) -> ConnectionState:
        return self._state.state_of(connection_id)

    def online_identities(self) -> list[Identity]:
        return self._state.sessions.list_identities()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self, connection_id: ConnectionId, websocket: WebSocket) -> None:
        async with self._state.lock:
            if connection_id in self._state.transports:
                return
            self._state.transports[connection_id] = websocket
            realtime_connections.labels("chat").inc()
            logger.debug("Connection %s attached", connection_id)

    async def join(
        self,
        connection_id: ConnectionId,
        identity: Identity,
        *,
        owner_ref: OwnerRef | None = None,
    ) -> bool:
        async with self._state.lock:
            if not self._accepts(connection_id, "join", ConnectionState.CONNECTED):
                return False
            state = self._state
            state.registry.bind(connection_id, identity, owner_ref=owner_ref)
            change = state.sessions.add_connection(identity, connection_id)
            realtime_online_identities.set(change.total_identities)

            if change.transition:
                await self._broadcast(events.presence_joined(identity, change.total_identities))
            else:
                await self._send_to([connection_id], events.count_update(change.total_identities))

            roster = [other for other in state.sessions.list_identities() if other != identity]
            await self._send_to([connection_id], events.roster_snapshot(roster))

            try:
                records = await self._store.recent(self._config.history_limit)
            except Exception as exc:
                self._log_storage_failure("recent", exc)
            else:
                state.public_messages.update(record.id for record in records)
                await self._send_to([connection_id], events.history(records))

            typing_now = state.typing.current_typing_identities(state.registry)
            if typing_now:
                await self._send_to([connection_id], events.typing_roster_update(typing_now))
            return True

    async def disconnect(self, connection_id: ConnectionId) -> None:
        # Runs from the transport's cleanup path, often while its task is being
        # cancelled; the departure must still be announced.
        with anyio.CancelScope(shield=True):
            await self._disconnect(connection_id)

    async def _disconnect(self, connection_id: ConnectionId) -> None:
        async with self._state.lock:
            state = self._state
            if state.transports.pop(connection_id, None) is not None:
                realtime_connections.labels("chat").dec()
            identity = state.registry.resolve(connection_id)
            if identity is None:
                state.typing.clear_typing(connection_id)
                return
            realtime_events_total.labels("disconnect", "in").inc()
            change = state.sessions.remove_connection(identity, connection_id)
            typing_changed = state.typing.clear_typing(connection_id)
            state.registry.unbind(connection_id)
            realtime_online_identities.set(change.total_identities)

            if typing_changed:
                await self._broadcast_typing_roster()
            if change.transition:
                await self._broadcast(events.presence_left(identity, change.total_identities))

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------
    async def send_message(self, connection_id: ConnectionId, body: str) -> PersistedRecord | None:
        async with self._state.lock:
            if not self._accepts(connection_id, "message", ConnectionState.JOINED):
                return None
            state = self._state
            identity = state.registry.resolve(connection_id)
            owner_ref = state.registry.owner_ref(connection_id)

            if state.typing.clear_typing(connection_id):
                await self._broadcast_typing_roster()

            try:
                record = await self._store.append(identity, body, owner_ref)
            except Exception as exc:
                self._log_storage_failure("append", exc)
                return None
            state.public_messages.add(record.id)
            await self._broadcast(events.new_message(record))
            return record

    async def send_private_message(
        self, connection_id: ConnectionId, recipient: Identity, body: str
    ) -> PersistedRecord | None:
        async with self._state.lock:
            if not self._accepts(connection_id, "privateMessage", ConnectionState.JOINED):
                return None
            state = self._state
            sender = state.registry.resolve(connection_id)
            if recipient == sender:
                logger.debug("Discarding private message %s sent to itself", sender)
                return None
            if not state.sessions.is_online(recipient):
                logger.debug("Discarding private message from %s to offline %s", sender, recipient)
                return None

            state.private_chats.touch(sender, recipient, self._clock())
            audience = [
                *state.sessions.connections_of(recipient),
                *state.sessions.connections_of(sender),
            ]
            try:
                record = await self._store.append(
                    sender,
                    body,
                    state.registry.owner_ref(connection_id),
                    recipient=recipient,
                )
            except Exception as exc:
                self._log_storage_failure("append_private", exc)
                return None

            await self._send_to(audience, events.private_message(record))
            return record

    async def start_typing(self, connection_id: ConnectionId) -> bool:
        async with self._state.lock:
            if not self._accepts(connection_id, "typing", ConnectionState.JOINED):
                return False
            if not self._state.typing.set_typing(connection_id):
                return False
            await self._broadcast_typing_roster()
            return True

    async def stop_typing(self, connection_id: ConnectionId) -> bool:
        async with self._state.lock:
            if not self._accepts(connection_id, "stopTyping", ConnectionState.JOINED):
                return False
            if not self._state.typing.clear_typing(connection_id):
                return False
            await self._broadcast_typing_roster()
            return True

    async def mark_read(
        self, connection_id: ConnectionId, message_ids: Iterable[Hashable]
    ) -> list[Hashable]:
        async with self._state.lock:
            if not self._accepts(connection_id, "markRead", ConnectionState.JOINED):
                return []
            state = self._state
            reader = state.registry.resolve(connection_id)
            newly_marked = []
            for message_id in dict.fromkeys(message_ids):
                if message_id not in state.public_messages:
                    logger.debug(
                        "Ignoring read receipt from %s for unknown message %r", reader, message_id
                    )
                    continue
                if state.receipts.mark_read(message_id, reader):
                    newly_marked.append(message_id)
            for message_id in newly_marked:
                try:
                    await self._store.record_read(message_id, reader)
                except Exception as exc:
                    self._log_storage_failure("record_read", exc)
                await self._broadcast(events.read_receipt(message_id, reader))
            return newly_marked

    async def focus_private_chat(self, connection_id: ConnectionId, other: Identity) -> bool:
        async with self._state.lock:
            if not self._accepts(connection_id, "focusPrivateChat", ConnectionState.JOINED):
                return False
            identity = self._state.registry.resolve(connection_id)
            if other == identity:
                return False
            self._state.private_chats.touch(identity, other, self._clock())
            return True

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------
    async def sweep_private_chats(self, now: float | None = None) -> list[PrivatePair]:
        async with self._state.lock:
            state = self._state
            if now is None:
                now = self._clock()
            expired = state.private_chats.sweep(now, self._config.private_chat_inactivity_seconds)
            for first, second in expired:
                for identity, other in ((first, second), (second, first)):
                    connections = state.sessions.connections_of(identity)
                    if not connections:
                        continue
                    await self._send_to(connections, events.chat_expired(other))
            if expired:
                private_chats_expired_total.inc(amount=len(expired))
            return expired

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _accepts(
        self, connection_id: ConnectionId, event: str, required: ConnectionState
    ) -> bool:
        current = self._state.state_of(connection_id)
        if current is not required:
            logger.debug(
                "Discarding %s from connection %s in state %s", event, connection_id, current.value
            )
            realtime_events_total.labels(event, "discarded").inc()
            return False
        realtime_events_total.labels(event, "in").inc()
        return True

    def _log_storage_failure(self, operation: str, exc: Exception) -> None:
        realtime_persistence_failures_total.labels(operation).inc()
        if isinstance(exc, PersistenceError):
            logger.warning(
                "Message store unavailable during %s; dropping outbound effects",
                operation,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
        else:
            logger.exception("Unexpected message store error during %s", operation)

    async def _broadcast_typing_roster(self) -> None:
        state = self._state
        identities = state.typing.current_typing_identities(state.registry)
        await self._broadcast(events.typing_roster_update(identities))

    async def _broadcast(self, payload: dict[str, Any]) -> None:
        await self._deliver(list(self._state.transports.values()), payload)

    async def _send_to(
        self, connection_ids: Iterable[ConnectionId], payload: dict[str, Any]
    ) -> None:
        transports = self._state.transports
        websockets: Sequence[WebSocket] = [
            transports[connection_id] for connection_id in connection_ids if connection_id in transports
        ]
        await self._deliver(websockets, payload)

    async def _deliver(self, websockets: Sequence[WebSocket], payload: dict[str, Any]) -> None:
        if not websockets:
            return
        await fan_out(websockets, payload)
        realtime_events_total.labels(payload["type"], "out").inc()


__all__ = ["BroadcastRouter", "RelayConfig"]
