"""Last-activity tracking for one-to-one private conversations."""

from __future__ import annotations

import logging
from typing import Dict, Tuple

from .connections import Identity

logger = logging.getLogger(__name__)

PrivatePair = Tuple[Identity, Identity]


def pair_key(first: Identity, second: Identity) -> PrivatePair:
    """Return the order independent key for a conversation between two identities."""

    return (first, second) if first <= second else (second, first)


class PrivateChatActivityTracker:
    """Timestamps per conversation pair, expired by :meth:`sweep`."""

    def __init__(self) -> None:
        self._activity: Dict[PrivatePair, float] = {}

    def touch(self, first: Identity, second: Identity, now: float) -> PrivatePair:
        key = pair_key(first, second)
        self._activity[key] = now
        return key

    def last_activity(self, first: Identity, second: Identity) -> float | None:
        return self._activity.get(pair_key(first, second))

    def sweep(self, now: float, inactivity_window: float) -> list[PrivatePair]:
        expired = [
            key for key, last_seen in self._activity.items() if now - last_seen > inactivity_window
        ]
        for key in expired:
            self._activity.pop(key, None)
        if expired:
            logger.info("Expired %d idle private chats", len(expired))
        return expired

    def __len__(self) -> int:
        return len(self._activity)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return pair_key(*key) in self._activity
