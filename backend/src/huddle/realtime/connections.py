"""Mapping of live transport connections to the identity they joined as."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Hashable, Iterator, NewType

logger = logging.getLogger(__name__)

ConnectionId = NewType("ConnectionId", str)
"""Opaque handle assigned by the transport layer, unique per physical connection."""

Identity = str
OwnerRef = Hashable


@dataclass(slots=True, frozen=True)
class _Binding:
    identity: Identity
    owner_ref: OwnerRef | None = None


class ConnectionRegistry:
    """Track which identity each joined connection belongs to.

    A connection is bound exactly once in its lifetime. Re-binding an already
    bound connection is rejected and leaves the original mapping untouched.
    """

    def __init__(self) -> None:
        self._bindings: Dict[ConnectionId, _Binding] = {}

    def bind(
        self,
        connection_id: ConnectionId,
        identity: Identity,
        *,
        owner_ref: OwnerRef | None = None,
    ) -> bool:
        if connection_id in self._bindings:
            logger.debug("Ignoring repeated bind for connection %s", connection_id)
            return False
        self._bindings[connection_id] = _Binding(identity=identity, owner_ref=owner_ref)
        return True

    def resolve(self, connection_id: ConnectionId) -> Identity | None:
        binding = self._bindings.get(connection_id)
        return binding.identity if binding is not None else None

    def owner_ref(self, connection_id: ConnectionId) -> OwnerRef | None:
        binding = self._bindings.get(connection_id)
        return binding.owner_ref if binding is not None else None

    def unbind(self, connection_id: ConnectionId) -> Identity | None:
        binding = self._bindings.pop(connection_id, None)
        return binding.identity if binding is not None else None

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[ConnectionId]:
        return iter(list(self._bindings))
