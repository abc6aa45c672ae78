"""Presence tracking and message fan-out for the group chat relay."""

from .connections import ConnectionId, ConnectionRegistry  # noqa: F401
from .errors import PersistenceError, RelayError  # noqa: F401
from .presence import IdentitySessionTracker, SessionChange  # noqa: F401
from .private_chats import PrivateChatActivityTracker, pair_key  # noqa: F401
from .receipts import ReadReceiptLedger  # noqa: F401
from .router import BroadcastRouter, RelayConfig  # noqa: F401
from .runtime import (  # noqa: F401
    configure_realtime,
    get_router,
    get_sweeper,
    shutdown_realtime,
    startup_realtime,
)
from .state import ConnectionState, RuntimeState  # noqa: F401
from .storage import MessageStore, PersistedRecord  # noqa: F401
from .sweeper import PrivateChatSweeper  # noqa: F401
from .typing_status import TypingCoordinator  # noqa: F401

__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_router",
    "get_sweeper",
    "BroadcastRouter",
    "ConnectionId",
    "ConnectionRegistry",
    "ConnectionState",
    "IdentitySessionTracker",
    "MessageStore",
    "PersistedRecord",
    "PersistenceError",
    "PrivateChatActivityTracker",
    "PrivateChatSweeper",
    "ReadReceiptLedger",
    "RelayConfig",
    "RelayError",
    "RuntimeState",
    "SessionChange",
    "TypingCoordinator",
    "pair_key",
]
