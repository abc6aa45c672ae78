"""SQLAlchemy implementation of the realtime message store."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Hashable, Sequence

import anyio
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ChatMessage, ChatUser, ReadReceipt
from huddle.realtime.errors import PersistenceError
from huddle.realtime.storage import PersistedRecord

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(message: ChatMessage, read_by: Sequence[str] = ()) -> PersistedRecord:
    return PersistedRecord(
        id=message.id,
        author=message.username,
        body=message.message,
        created_at=_as_utc(message.timestamp),
        recipient=message.recipient,
        read_by=tuple(read_by),
    )


def load_recent_messages(db: Session, limit: int) -> list[PersistedRecord]:
    """Return the newest public messages, oldest first, with their readers."""

    stmt = (
        select(ChatMessage)
        .where(ChatMessage.recipient.is_(None))
        .order_by(ChatMessage.id.desc())
        .limit(limit)
    )
    messages = list(reversed(db.execute(stmt).scalars().all()))
    if not messages:
        return []

    readers: dict[int, list[str]] = defaultdict(list)
    receipt_stmt = (
        select(ReadReceipt.message_id, ReadReceipt.reader_username)
        .where(ReadReceipt.message_id.in_([message.id for message in messages]))
        .order_by(ReadReceipt.id)
    )
    for message_id, reader in db.execute(receipt_stmt):
        readers[message_id].append(reader)
    return [_to_record(message, readers.get(message.id, ())) for message in messages]


class SqlMessageStore:
    """Message log backed by the relational database.

    Sessions are short lived and run in a worker thread so the event loop
    never blocks on the database driver.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        author: str,
        body: str,
        owner_ref: Hashable | None = None,
        *,
        recipient: str | None = None,
    ) -> PersistedRecord:
        return await self._run("append", self._append_sync, author, body, owner_ref, recipient)

    async def recent(self, limit: int) -> Sequence[PersistedRecord]:
        return await self._run("recent", self._recent_sync, limit)

    async def record_read(self, message_id: Hashable, reader: str) -> None:
        await self._run("record_read", self._record_read_sync, message_id, reader)

    async def _run(self, operation: str, func: Callable, *args):
        try:
            return await anyio.to_thread.run_sync(func, *args)
        except SQLAlchemyError as exc:
            raise PersistenceError(operation, type(exc).__name__) from exc

    def _append_sync(
        self,
        author: str,
        body: str,
        owner_ref: Hashable | None,
        recipient: str | None,
    ) -> PersistedRecord:
        with self._session_factory() as db:
            message = ChatMessage(
                username=author,
                message=body,
                user_id=owner_ref,
                recipient=recipient,
            )
            db.add(message)
            if owner_ref is not None:
                db.execute(
                    update(ChatUser)
                    .where(ChatUser.id == owner_ref)
                    .values(message_count=ChatUser.message_count + 1)
                )
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.warning("Failed to store message from %s", author)
                raise
            db.refresh(message)
            return _to_record(message)

    def _recent_sync(self, limit: int) -> list[PersistedRecord]:
        with self._session_factory() as db:
            return load_recent_messages(db, limit)

    def _record_read_sync(self, message_id: Hashable, reader: str) -> None:
        try:
            message_pk = int(message_id)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.debug("Ignoring read receipt for non-numeric message id %r", message_id)
            return
        with self._session_factory() as db:
            if db.get(ChatMessage, message_pk) is None:
                logger.debug("Ignoring read receipt for unknown message %s", message_pk)
                return
            db.add(ReadReceipt(message_id=message_pk, reader_username=reader))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                # Receipt already stored
