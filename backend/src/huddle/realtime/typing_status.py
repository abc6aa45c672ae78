"""Typing indicator state keyed by connection."""

from __future__ import annotations

import logging
from typing import Set

from .connections import ConnectionId, ConnectionRegistry, Identity

logger = logging.getLogger(__name__)


class TypingCoordinator:
    """Stores which connections are currently typing.

    Entries left behind by connections that closed without a stop signal are
    purged the next time the roster is computed.
    """

    def __init__(self) -> None:
        self._typing: Set[ConnectionId] = set()

    def set_typing(self, connection_id: ConnectionId) -> bool:
        if connection_id in self._typing:
            return False
        self._typing.add(connection_id)
        return True

    def clear_typing(self, connection_id: ConnectionId) -> bool:
        if connection_id not in self._typing:
            return False
        self._typing.discard(connection_id)
        return True

    def is_typing(self, connection_id: ConnectionId) -> bool:
        return connection_id in self._typing

    def current_typing_identities(self, registry: ConnectionRegistry) -> list[Identity]:
        identities: set[Identity] = set()
        stale: list[ConnectionId] = []
        for connection_id in self._typing:
            identity = registry.resolve(connection_id)
            if identity is None:
                stale.append(connection_id)
                continue
            identities.add(identity)
        if stale:
            logger.debug("Purging %d stale typing entries", len(stale))
            self._typing.difference_update(stale)
        return sorted(identities, key=str.lower)

    def __len__(self) -> int:
        return len(self._typing)
