"""In-memory ledger of read receipts."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Hashable, Set

from .connections import Identity

MessageId = Hashable


class ReadReceiptLedger:
    """Remember which identities acknowledged each message.

    The ledger only grows; a reader is recorded at most once per message.
    """

    def __init__(self) -> None:
        self._readers: Dict[MessageId, Set[Identity]] = defaultdict(set)

    def mark_read(self, message_id: MessageId, identity: Identity) -> bool:
        readers = self._readers[message_id]
        if identity in readers:
            return False
        readers.add(identity)
        return True

    def readers_of(self, message_id: MessageId) -> frozenset[Identity]:
        return frozenset(self._readers.get(message_id, ()))

    def __len__(self) -> int:
        return len(self._readers)
