"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from huddle.realtime.storage import PersistedRecord


class MessageRead(BaseModel):
    """Serialized representation of a public chat message."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    identity: str
    body: str
    timestamp: datetime
    read_by: list[str] = Field(default_factory=list, serialization_alias="readBy")

    @classmethod
    def from_record(cls, record: PersistedRecord) -> "MessageRead":
        return cls(
            id=record.id,
            identity=record.author,
            body=record.body,
            timestamp=record.created_at,
            read_by=list(record.read_by),
        )


class HistoryPage(BaseModel):
    """Most recent messages, oldest first."""

    items: list[MessageRead]
    limit: int


class PresenceRead(BaseModel):
    """Identities currently holding at least one open connection."""

    identities: list[str]
    total_identities: int = Field(serialization_alias="totalIdentities")
