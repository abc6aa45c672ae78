"""Application service helpers."""

from .identities import ResolvedIdentity, display_label, generate_tripcode, resolve_identity
from .storage import SqlMessageStore, load_recent_messages

__all__ = [
    "ResolvedIdentity",
    "SqlMessageStore",
    "display_label",
    "generate_tripcode",
    "load_recent_messages",
    "resolve_identity",
]
