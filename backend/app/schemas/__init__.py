"""Pydantic schemas for API payloads."""

from .messages import HistoryPage, MessageRead, PresenceRead
from .realtime import (
    INBOUND_EVENTS,
    FocusPrivateChatEvent,
    InboundEvent,
    JoinEvent,
    MarkReadEvent,
    MessageEvent,
    PrivateMessageEvent,
    StopTypingEvent,
    TypingEvent,
)

__all__ = [
    "HistoryPage",
    "MessageRead",
    "PresenceRead",
    "INBOUND_EVENTS",
    "InboundEvent",
    "JoinEvent",
    "MessageEvent",
    "PrivateMessageEvent",
    "TypingEvent",
    "StopTypingEvent",
    "MarkReadEvent",
    "FocusPrivateChatEvent",
]
