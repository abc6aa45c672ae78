"""Exceptions raised by realtime collaborators."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""


class PersistenceError(RelayError):
    """Raised by a message store when a record cannot be written or read."""

    def __init__(self, operation: str, detail: str | None = None) -> None:
        self.operation = operation
        message = f"Message store failed during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
