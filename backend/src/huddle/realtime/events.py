"""Outbound event payloads emitted by the broadcast router."""

from __future__ import annotations

from typing import Any, Hashable, Iterable

from .connections import Identity
from .storage import PersistedRecord

PRESENCE_JOINED = "presence-joined"
PRESENCE_LEFT = "presence-left"
COUNT_UPDATE = "count-update"
ROSTER_SNAPSHOT = "roster-snapshot"
HISTORY = "history"
NEW_MESSAGE = "new-message"
PRIVATE_MESSAGE = "private-message"
TYPING_ROSTER_UPDATE = "typing-roster-update"
READ_RECEIPT = "read-receipt"
CHAT_EXPIRED = "chat-expired"


def presence_joined(identity: Identity, total_identities: int) -> dict[str, Any]:
    return {"type": PRESENCE_JOINED, "identity": identity, "totalIdentities": total_identities}


def presence_left(identity: Identity, total_identities: int) -> dict[str, Any]:
    return {"type": PRESENCE_LEFT, "identity": identity, "totalIdentities": total_identities}


def count_update(total_identities: int) -> dict[str, Any]:
    return {"type": COUNT_UPDATE, "totalIdentities": total_identities}


def roster_snapshot(identities: Iterable[Identity]) -> dict[str, Any]:
    return {"type": ROSTER_SNAPSHOT, "identities": list(identities)}


def history(records: Iterable[PersistedRecord]) -> dict[str, Any]:
    return {"type": HISTORY, "records": [record.to_history_entry() for record in records]}


def new_message(record: PersistedRecord) -> dict[str, Any]:
    return {
        "type": NEW_MESSAGE,
        "id": record.id,
        "identity": record.author,
        "body": record.body,
        "timestamp": record.timestamp,
    }


def private_message(record: PersistedRecord) -> dict[str, Any]:
    return {
        "type": PRIVATE_MESSAGE,
        "id": record.id,
        "from": record.author,
        "to": record.recipient,
        "body": record.body,
        "timestamp": record.timestamp,
    }


def typing_roster_update(identities: Iterable[Identity]) -> dict[str, Any]:
    return {"type": TYPING_ROSTER_UPDATE, "identities": list(identities)}


def read_receipt(message_id: Hashable, reader: Identity) -> dict[str, Any]:
    return {"type": READ_RECEIPT, "messageId": message_id, "readerIdentity": reader}


def chat_expired(other: Identity) -> dict[str, Any]:
    return {"type": CHAT_EXPIRED, "otherIdentity": other}
