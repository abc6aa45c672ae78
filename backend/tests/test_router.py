from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import anyio
import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import (
    private_chats_expired_total,
    realtime_connections,
    realtime_events_total,
    realtime_online_identities,
    realtime_persistence_failures_total,
)
from huddle.realtime import (
    BroadcastRouter,
    ConnectionId,
    ConnectionState,
    PersistedRecord,
    PersistenceError,
    RelayConfig,
)


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def types(self) -> list[str]:
        return [payload["type"] for payload in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload["type"] == event_type]


class InMemoryStore:
    def __init__(self) -> None:
        self.records: list[PersistedRecord] = []
        self.reads: list[tuple[Any, str]] = []
        self._ids = itertools.count(1)
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def append(self, author, body, owner_ref=None, *, recipient=None) -> PersistedRecord:
        # let other tasks run so the router lock is what keeps events ordered
        await asyncio.sleep(0)
        message_id = next(self._ids)
        record = PersistedRecord(
            id=message_id,
            author=author,
            body=body,
            created_at=self._epoch + timedelta(seconds=message_id),
            recipient=recipient,
        )
        self.records.append(record)
        return record

    async def recent(self, limit: int) -> list[PersistedRecord]:
        public = [record for record in self.records if record.recipient is None]
        return public[-limit:]

    async def record_read(self, message_id, reader: str) -> None:
        self.reads.append((message_id, reader))


class FailingStore(InMemoryStore):
    async def append(self, author, body, owner_ref=None, *, recipient=None) -> PersistedRecord:
        raise PersistenceError("append", "database unavailable")

    async def recent(self, limit: int) -> list[PersistedRecord]:
        raise PersistenceError("recent", "database unavailable")

    async def record_read(self, message_id, reader: str) -> None:
        raise PersistenceError("record_read", "database unavailable")


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def relay(store, clock) -> BroadcastRouter:
    return BroadcastRouter(store, config=RelayConfig(history_limit=50), clock=clock)


async def attach(relay: BroadcastRouter, name: str, identity: str | None = None) -> DummyWebSocket:
    websocket = DummyWebSocket()
    await relay.connect(ConnectionId(name), websocket)
    if identity is not None:
        await relay.join(ConnectionId(name), identity)
    return websocket


@pytest.mark.anyio
async def test_join_sends_presence_roster_and_history(relay) -> None:
    websocket = await attach(relay, "c1", "alice")

    assert websocket.types() == ["presence-joined", "roster-snapshot", "history"]
    assert websocket.sent[0] == {"type": "presence-joined", "identity": "alice", "totalIdentities": 1}
    assert websocket.sent[1]["identities"] == []
    assert websocket.sent[2]["records"] == []
    assert relay.state_of(ConnectionId("c1")) is ConnectionState.JOINED
    assert realtime_online_identities.value() == 1
    assert realtime_connections.value("chat") == 1


@pytest.mark.anyio
async def test_repeated_join_is_ignored(relay) -> None:
    websocket = await attach(relay, "c1", "alice")
    websocket.sent.clear()

    assert await relay.join(ConnectionId("c1"), "mallory") is False

    assert websocket.sent == []
    assert relay.online_identities() == ["alice"]
    assert realtime_events_total.value("join", "discarded") == 1


@pytest.mark.anyio
async def test_multi_tab_identity_is_announced_once(relay) -> None:
    bob = await attach(relay, "b1", "bob")
    first_tab = await attach(relay, "a1", "alice")
    second_tab = await attach(relay, "a2", "alice")
    third_tab = await attach(relay, "a3", "alice")

    assert len(bob.of_type("presence-joined")) == 2  # bob himself, then alice
    assert first_tab.types()[0] == "presence-joined"
    assert second_tab.sent[0] == {"type": "count-update", "totalIdentities": 2}
    assert third_tab.sent[1] == {"type": "roster-snapshot", "identities": ["bob"]}

    await relay.disconnect(ConnectionId("a1"))
    await relay.disconnect(ConnectionId("a2"))
    assert bob.of_type("presence-left") == []

    await relay.disconnect(ConnectionId("a3"))
    assert bob.of_type("presence-left") == [
        {"type": "presence-left", "identity": "alice", "totalIdentities": 1}
    ]
    assert relay.online_identities() == ["bob"]


@pytest.mark.anyio
async def test_join_history_carries_prior_messages_and_readers(relay, store) -> None:
    await store.append("carol", "first")
    await store.append("carol", "second")
    await store.append("carol", "secret", recipient="dave")

    websocket = await attach(relay, "c1", "alice")

    records = websocket.of_type("history")[0]["records"]
    assert [record["body"] for record in records] == ["first", "second"]
    assert records[0]["identity"] == "carol"
    assert records[0]["readBy"] == []


@pytest.mark.anyio
async def test_join_replays_current_typing_roster(relay) -> None:
    await attach(relay, "b1", "bob")
    await relay.start_typing(ConnectionId("b1"))

    websocket = await attach(relay, "a1", "alice")

    assert websocket.types()[-1] == "typing-roster-update"
    assert websocket.sent[-1]["identities"] == ["bob"]


@pytest.mark.anyio
async def test_events_before_join_are_discarded(relay, store) -> None:
    websocket = await attach(relay, "c1")

    assert await relay.send_message(ConnectionId("c1"), "hello") is None
    assert await relay.start_typing(ConnectionId("c1")) is False
    assert await relay.mark_read(ConnectionId("c1"), [1]) == []
    assert await relay.focus_private_chat(ConnectionId("c1"), "bob") is False

    assert store.records == []
    assert websocket.sent == []
    assert relay.state_of(ConnectionId("c1")) is ConnectionState.CONNECTED
    assert realtime_events_total.value("message", "discarded") == 1


@pytest.mark.anyio
async def test_message_reaches_every_attached_connection(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")
    lurker = await attach(relay, "x1")

    record = await relay.send_message(ConnectionId("a1"), "hi")

    assert record is not None
    expected = {
        "type": "new-message",
        "id": record.id,
        "identity": "alice",
        "body": "hi",
        "timestamp": record.timestamp,
    }
    for websocket in (alice, bob, lurker):
        assert websocket.sent[-1] == expected


@pytest.mark.anyio
async def test_sending_clears_typing_before_the_message(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    await relay.start_typing(ConnectionId("a1"))
    alice.sent.clear()

    await relay.send_message(ConnectionId("a1"), "done typing")

    assert alice.types() == ["typing-roster-update", "new-message"]
    assert alice.sent[0]["identities"] == []


@pytest.mark.anyio
async def test_messages_keep_their_send_order(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")

    for body in ("one", "two", "three"):
        await relay.send_message(ConnectionId("a1"), body)

    assert [record.body for record in store.records] == ["one", "two", "three"]
    for websocket in (alice, bob):
        assert [payload["body"] for payload in websocket.of_type("new-message")] == [
            "one",
            "two",
            "three",
        ]


@pytest.mark.anyio
async def test_concurrent_events_are_delivered_in_one_order(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")

    await asyncio.gather(
        *(
            relay.send_message(ConnectionId(name), f"{name}-{index}")
            for index in range(5)
            for name in ("a1", "b1")
        )
    )

    stored_ids = [record.id for record in store.records]
    for websocket in (alice, bob):
        assert [payload["id"] for payload in websocket.of_type("new-message")] == stored_ids


@pytest.mark.anyio
async def test_persistence_failure_drops_the_broadcast(caplog, clock) -> None:
    relay = BroadcastRouter(FailingStore(), clock=clock)
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")

    with caplog.at_level(logging.WARNING, logger="huddle.realtime.router"):
        record = await relay.send_message(ConnectionId("a1"), "lost")

    assert record is None
    assert alice.of_type("new-message") == []
    assert bob.of_type("new-message") == []
    assert any(
        entry.levelno == logging.WARNING and "append" in entry.getMessage()
        for entry in caplog.records
    )
    assert realtime_persistence_failures_total.value("append") == 1


@pytest.mark.anyio
async def test_history_failure_still_completes_join(clock) -> None:
    relay = BroadcastRouter(FailingStore(), clock=clock)

    websocket = await attach(relay, "a1", "alice")

    assert websocket.types() == ["presence-joined", "roster-snapshot"]
    assert relay.online_identities() == ["alice"]
    assert realtime_persistence_failures_total.value("recent") == 1


@pytest.mark.anyio
async def test_read_receipt_is_broadcast_once(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    await attach(relay, "b2", "bob")
    record = await relay.send_message(ConnectionId("a1"), "read me")

    assert await relay.mark_read(ConnectionId("b1"), [record.id, record.id]) == [record.id]
    assert await relay.mark_read(ConnectionId("b2"), [record.id]) == []

    assert alice.of_type("read-receipt") == [
        {"type": "read-receipt", "messageId": record.id, "readerIdentity": "bob"}
    ]
    assert store.reads == [(record.id, "bob")]
    assert relay.state.receipts.readers_of(record.id) == {"bob"}


class ReadFailingStore(InMemoryStore):
    async def record_read(self, message_id, reader: str) -> None:
        raise PersistenceError("record_read", "database unavailable")


@pytest.mark.anyio
async def test_read_receipt_survives_storage_failure(clock) -> None:
    store = ReadFailingStore()
    record = await store.append("carol", "from history")
    relay = BroadcastRouter(store, clock=clock)
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")

    assert await relay.mark_read(ConnectionId("b1"), [record.id]) == [record.id]

    assert alice.of_type("read-receipt")[0]["readerIdentity"] == "bob"
    assert realtime_persistence_failures_total.value("record_read") == 1


@pytest.mark.anyio
async def test_typing_broadcasts_only_on_change(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    alice.sent.clear()

    assert await relay.start_typing(ConnectionId("b1")) is True
    assert await relay.start_typing(ConnectionId("b1")) is False
    assert await relay.stop_typing(ConnectionId("b1")) is True
    assert await relay.stop_typing(ConnectionId("b1")) is False

    assert alice.sent == [
        {"type": "typing-roster-update", "identities": ["bob"]},
        {"type": "typing-roster-update", "identities": []},
    ]


@pytest.mark.anyio
async def test_disconnect_while_typing_heals_the_roster(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    await relay.start_typing(ConnectionId("a1"))
    await relay.start_typing(ConnectionId("b1"))
    alice.sent.clear()

    await relay.disconnect(ConnectionId("b1"))

    assert alice.sent[0] == {"type": "typing-roster-update", "identities": ["alice"]}
    assert alice.sent[1]["type"] == "presence-left"
    state = relay.state
    assert state.typing.current_typing_identities(state.registry) == ["alice"]


@pytest.mark.anyio
async def test_disconnect_is_idempotent(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")

    await relay.disconnect(ConnectionId("b1"))
    await relay.disconnect(ConnectionId("b1"))
    await relay.disconnect(ConnectionId("never-seen"))

    assert len(alice.of_type("presence-left")) == 1
    assert relay.state_of(ConnectionId("b1")) is ConnectionState.CLOSED
    assert realtime_connections.value("chat") == 1


@pytest.mark.anyio
async def test_private_message_reaches_both_parties_only(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")
    bob_phone = await attach(relay, "b1", "bob")
    bob_laptop = await attach(relay, "b2", "bob")
    carol = await attach(relay, "c1", "carol")

    record = await relay.send_private_message(ConnectionId("a1"), "bob", "psst")

    assert record is not None
    assert record.recipient == "bob"
    expected = {
        "type": "private-message",
        "id": record.id,
        "from": "alice",
        "to": "bob",
        "body": "psst",
        "timestamp": record.timestamp,
    }
    for websocket in (alice, bob_phone, bob_laptop):
        assert websocket.of_type("private-message") == [expected]
    assert carol.of_type("private-message") == []
    assert ("alice", "bob") in relay.state.private_chats
    # private records never show up in public history
    assert await store.recent(10) == []


@pytest.mark.anyio
async def test_private_message_to_offline_identity_is_dropped(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")

    assert await relay.send_private_message(ConnectionId("a1"), "ghost", "anyone?") is None
    assert await relay.send_private_message(ConnectionId("a1"), "alice", "me?") is None

    assert store.records == []
    assert alice.of_type("private-message") == []
    assert len(relay.state.private_chats) == 0


@pytest.mark.anyio
async def test_idle_private_chat_expires_for_both_sides(relay, clock) -> None:
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")
    await relay.send_private_message(ConnectionId("a1"), "bob", "hello")

    assert await relay.sweep_private_chats(now=59.0) == []
    assert alice.of_type("chat-expired") == []

    assert await relay.sweep_private_chats(now=61.0) == [("alice", "bob")]

    assert alice.of_type("chat-expired") == [{"type": "chat-expired", "otherIdentity": "bob"}]
    assert bob.of_type("chat-expired") == [{"type": "chat-expired", "otherIdentity": "alice"}]
    assert private_chats_expired_total.value() == 1

    assert await relay.sweep_private_chats(now=200.0) == []
    assert len(alice.of_type("chat-expired")) == 1


@pytest.mark.anyio
async def test_focusing_a_private_chat_keeps_it_alive(relay, clock) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    await relay.send_private_message(ConnectionId("a1"), "bob", "hello")

    clock.now = 30.0
    assert await relay.focus_private_chat(ConnectionId("b1"), "alice") is True

    assert await relay.sweep_private_chats(now=61.0) == []
    assert await relay.sweep_private_chats(now=91.0) == [("alice", "bob")]
    assert len(alice.of_type("chat-expired")) == 1


@pytest.mark.anyio
async def test_expiry_notifies_only_the_side_still_online(relay) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    await relay.send_private_message(ConnectionId("a1"), "bob", "bye")
    await relay.disconnect(ConnectionId("b1"))

    assert await relay.sweep_private_chats(now=120.0) == [("alice", "bob")]

    assert alice.of_type("chat-expired") == [{"type": "chat-expired", "otherIdentity": "bob"}]


@pytest.mark.anyio
async def test_alice_and_bob_conversation(relay, store) -> None:
    await store.append("carol", "earlier")

    alice = await attach(relay, "a1", "alice")
    assert alice.of_type("roster-snapshot")[0]["identities"] == []

    bob = await attach(relay, "b1", "bob")
    assert alice.sent[-1] == {"type": "presence-joined", "identity": "bob", "totalIdentities": 2}
    assert bob.of_type("roster-snapshot")[0]["identities"] == ["alice"]
    assert [record["body"] for record in bob.of_type("history")[0]["records"]] == ["earlier"]

    record = await relay.send_message(ConnectionId("a1"), "hi")
    for websocket in (alice, bob):
        message = websocket.of_type("new-message")[-1]
        assert (message["identity"], message["body"]) == ("alice", "hi")

    await relay.mark_read(ConnectionId("b1"), [record.id])
    assert alice.sent[-1] == {"type": "read-receipt", "messageId": record.id, "readerIdentity": "bob"}

    await relay.disconnect(ConnectionId("b1"))
    assert alice.sent[-1] == {"type": "presence-left", "identity": "bob", "totalIdentities": 1}


@pytest.mark.anyio
async def test_read_receipts_for_unseen_messages_are_ignored(relay, store) -> None:
    alice = await attach(relay, "a1", "alice")
    await attach(relay, "b1", "bob")
    await attach(relay, "c1", "carol")
    private = await relay.send_private_message(ConnectionId("a1"), "carol", "between us")

    assert await relay.mark_read(ConnectionId("b1"), range(10_000, 10_500)) == []
    assert await relay.mark_read(ConnectionId("b1"), [private.id]) == []

    assert alice.of_type("read-receipt") == []
    assert store.reads == []
    assert len(relay.state.receipts) == 0


@pytest.mark.anyio
async def test_history_messages_can_be_marked_read(relay, store) -> None:
    record = await store.append("carol", "before anyone joined")
    alice = await attach(relay, "a1", "alice")

    assert await relay.mark_read(ConnectionId("a1"), [record.id]) == [record.id]

    assert alice.sent[-1] == {
        "type": "read-receipt",
        "messageId": record.id,
        "readerIdentity": "alice",
    }


@pytest.mark.anyio
async def test_private_message_persistence_failure_is_not_delivered(caplog, clock) -> None:
    relay = BroadcastRouter(FailingStore(), clock=clock)
    alice = await attach(relay, "a1", "alice")
    bob = await attach(relay, "b1", "bob")

    with caplog.at_level(logging.WARNING, logger="huddle.realtime.router"):
        record = await relay.send_private_message(ConnectionId("a1"), "bob", "lost")

    assert record is None
    assert alice.of_type("private-message") == []
    assert bob.of_type("private-message") == []
    assert realtime_persistence_failures_total.value("append_private") == 1
    assert any(
        entry.levelno == logging.WARNING and "append_private" in entry.getMessage()
        for entry in caplog.records
    )


class GatedWebSocket(DummyWebSocket):
    """Websocket whose sends block once :meth:`hold` is called."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = anyio.Event()
        self.release = anyio.Event()
        self._held = False

    def hold(self) -> None:
        self._held = True

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._held:
            self.entered.set()
            await self.release.wait()
        self.sent.append(payload)


@pytest.mark.anyio
async def test_cancelled_disconnect_still_announces_departure(relay) -> None:
    alice = GatedWebSocket()
    await relay.connect(ConnectionId("a1"), alice)
    await relay.join(ConnectionId("a1"), "alice")
    await attach(relay, "b1", "bob")
    alice.hold()

    async with anyio.create_task_group() as tg:
        tg.start_soon(relay.disconnect, ConnectionId("b1"))
        await alice.entered.wait()
        tg.cancel_scope.cancel()
        alice.release.set()

    assert alice.sent[-1] == {"type": "presence-left", "identity": "bob", "totalIdentities": 1}
    assert relay.online_identities() == ["alice"]
