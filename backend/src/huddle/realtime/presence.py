"""Per-identity connection sets used to derive presence transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Set

from .connections import ConnectionId, Identity

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SessionChange:
    """Outcome of adding or removing a connection for an identity.

    ``transition`` is ``True`` when the identity came online (first
    connection) or went offline (last connection closed).
    """

    identity: Identity
    transition: bool
    total_identities: int


class IdentitySessionTracker:
    """Group connections by identity so multi-tab users appear once."""

    def __init__(self) -> None:
        self._sessions: Dict[Identity, Set[ConnectionId]] = {}

    def add_connection(self, identity: Identity, connection_id: ConnectionId) -> SessionChange:
        bucket = self._sessions.get(identity)
        first = not bucket
        if bucket is None:
            bucket = self._sessions[identity] = set()
        bucket.add(connection_id)
        if first:
            logger.info("Identity %s came online", identity)
        return SessionChange(identity, first, len(self._sessions))

    def remove_connection(self, identity: Identity, connection_id: ConnectionId) -> SessionChange:
        bucket = self._sessions.get(identity)
        if bucket is None or connection_id not in bucket:
            return SessionChange(identity, False, len(self._sessions))
        bucket.discard(connection_id)
        last = not bucket
        if last:
            self._sessions.pop(identity, None)
            logger.info("Identity %s went offline", identity)
        return SessionChange(identity, last, len(self._sessions))

    def connections_of(self, identity: Identity) -> frozenset[ConnectionId]:
        return frozenset(self._sessions.get(identity, ()))

    def is_online(self, identity: Identity) -> bool:
        return identity in self._sessions

    def list_identities(self) -> list[Identity]:
        return sorted(self._sessions, key=str.lower)

    def __len__(self) -> int:
        return len(self._sessions)
