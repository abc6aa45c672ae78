"""Database models package."""

from .base import Base
from .chat import ChatMessage, ChatUser, ReadReceipt

__all__ = [
    "Base",
    "ChatUser",
    "ChatMessage",
    "ReadReceipt",
]
