"""Process-wide realtime state owned by the broadcast router."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Set

from .connections import ConnectionId, ConnectionRegistry
from .presence import IdentitySessionTracker
from .private_chats import PrivateChatActivityTracker
from .receipts import ReadReceiptLedger
from .typing_status import TypingCoordinator


class ConnectionState(str, Enum):
    """Lifecycle of a single transport connection."""

    CONNECTED = "connected"
    JOINED = "joined"
    CLOSED = "closed"


@dataclass
class RuntimeState:
    """Bundle of every registry the router mutates.

    A fresh instance is created per router, which keeps tests isolated.
    ``public_messages`` holds the ids of public records clients have been
    shown; only those can be marked read. ``lock`` serialises whole events so
    a single read-modify-write-emit sequence never interleaves with another.
    """

    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)
    sessions: IdentitySessionTracker = field(default_factory=IdentitySessionTracker)
    typing: TypingCoordinator = field(default_factory=TypingCoordinator)
    receipts: ReadReceiptLedger = field(default_factory=ReadReceiptLedger)
    private_chats: PrivateChatActivityTracker = field(default_factory=PrivateChatActivityTracker)
    transports: Dict[ConnectionId, Any] = field(default_factory=dict)
    public_messages: Set[Hashable] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def state_of(self, connection_id: ConnectionId) -> ConnectionState:
        if connection_id in self.registry:
            return ConnectionState.JOINED
        if connection_id in self.transports:
            return ConnectionState.CONNECTED
        return ConnectionState.CLOSED
