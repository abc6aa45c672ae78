"""Contract between the realtime router and durable message storage."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Hashable, Protocol, Sequence

from .connections import Identity, OwnerRef


@dataclass(slots=True, frozen=True)
class PersistedRecord:
    """A message as returned by the store."""

    id: Hashable
    author: Identity
    body: str
    created_at: datetime
    recipient: Identity | None = None
    read_by: tuple[Identity, ...] = field(default_factory=tuple)

    @property
    def timestamp(self) -> str:
        return self.created_at.isoformat()

    def to_history_entry(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.author,
            "body": self.body,
            "timestamp": self.timestamp,
            "readBy": list(self.read_by),
        }


class MessageStore(Protocol):
    """Durable append-only message log.

    Implementations raise :class:`~huddle.realtime.errors.PersistenceError`
    when a record cannot be written or read.
    """

    async def append(
        self,
        author: Identity,
        body: str,
        owner_ref: OwnerRef | None = None,
        *,
        recipient: Identity | None = None,
    ) -> PersistedRecord:
        """Persist a message; ``recipient`` marks a directed private record."""

    async def recent(self, limit: int) -> Sequence[PersistedRecord]:
        """Return at most ``limit`` public records ordered oldest to newest."""

    async def record_read(self, message_id: Hashable, reader: Identity) -> None:
        """Durably note that ``reader`` has seen ``message_id``."""
