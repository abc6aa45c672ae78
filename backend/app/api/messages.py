"""HTTP endpoints exposing chat history and presence."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.schemas import HistoryPage, MessageRead, PresenceRead
from app.services.storage import load_recent_messages
from huddle.realtime import get_router

router = APIRouter(tags=["messages"])

settings = get_settings()


@router.get("/messages", response_model=HistoryPage)
def read_recent_messages(
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> HistoryPage:
    """Return the most recent public messages, oldest first."""

    effective = min(limit or settings.chat_history_default_limit, settings.chat_history_max_limit)
    try:
        records = load_recent_messages(db, effective)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Message history unavailable"
        ) from exc
    return HistoryPage(items=[MessageRead.from_record(record) for record in records], limit=effective)


@router.get("/presence", response_model=PresenceRead)
def read_presence() -> PresenceRead:
    """List the identities that are currently online."""

    identities = get_router().online_identities()
    return PresenceRead(identities=identities, total_identities=len(identities))
