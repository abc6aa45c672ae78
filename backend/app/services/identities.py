"""Resolve a claimed name and optional secret into a display identity."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ChatUser

logger = logging.getLogger(__name__)

TRIPCODE_LENGTH = 8


@dataclass(slots=True, frozen=True)
class ResolvedIdentity:
    """Display label plus the database owner id, when one could be stored."""

    label: str
    user_id: int | None = None


def generate_tripcode(secret: str) -> str:
    """Derive a short public fingerprint from a private secret."""

    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:TRIPCODE_LENGTH]


def display_label(name: str, credential: str | None) -> str:
    if not credential:
        return name
    return f"{name}!{generate_tripcode(credential)}"


def _get_or_create_user(db: Session, name: str, tripcode: str, label: str) -> ChatUser:
    stmt = select(ChatUser).where(ChatUser.username == name, ChatUser.tripcode == tripcode)
    user = db.execute(stmt).scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if user is not None:
        user.last_seen = now
        db.commit()
        return user

    user = ChatUser(
        username=name,
        tripcode=tripcode,
        full_display_name=label,
        last_seen=now,
        message_count=0,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another connection created the same pair first
        db.rollback()
        user = db.execute(stmt).scalar_one()
    return user


def resolve_identity(db: Session, name: str, credential: str | None = None) -> ResolvedIdentity:
    """Return the label the relay uses for ``name`` and ``credential``.

    Database failures degrade to an identity without an owner id so that a
    user can still chat while history attribution is unavailable.
    """

    label = display_label(name, credential)
    tripcode = generate_tripcode(credential) if credential else ""
    try:
        user = _get_or_create_user(db, name, tripcode, label)
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "Could not persist identity %s; continuing without owner reference",
            label,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return ResolvedIdentity(label=label)
    return ResolvedIdentity(label=label, user_id=user.id)
