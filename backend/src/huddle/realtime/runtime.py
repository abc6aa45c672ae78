"""Process-wide wiring of the realtime router and its sweeper."""

from __future__ import annotations

import logging
import time
from typing import Callable

from app.config import Settings, get_settings

from .router import BroadcastRouter, RelayConfig
from .storage import MessageStore
from .sweeper import PrivateChatSweeper

logger = logging.getLogger(__name__)

_router: BroadcastRouter | None = None
_sweeper: PrivateChatSweeper | None = None


def _default_store() -> MessageStore:
    # local import keeps the database engine out of pure router usage
    from app.database import SessionLocal
    from app.services.storage import SqlMessageStore

    return SqlMessageStore(SessionLocal)


def configure_realtime(
    *,
    store: MessageStore | None = None,
    settings: Settings | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> BroadcastRouter:
    """Replace the process-wide router with a fresh one.

    Must not be called while the sweeper is running.
    """

    global _router, _sweeper
    if _sweeper is not None and _sweeper.running:
        raise RuntimeError("Stop the realtime runtime before reconfiguring it")

    settings = settings or get_settings()
    config = RelayConfig(
        history_limit=settings.chat_history_default_limit,
        private_chat_inactivity_seconds=float(settings.private_chat_inactivity_seconds),
    )
    _router = BroadcastRouter(store or _default_store(), config=config, clock=clock)
    _sweeper = PrivateChatSweeper(
        _router,
        interval_seconds=float(settings.private_chat_sweep_interval_seconds),
        clock=clock,
    )
    return _router


def get_router() -> BroadcastRouter:
    if _router is None:
        configure_realtime()
    assert _router is not None
    return _router


def get_sweeper() -> PrivateChatSweeper:
    if _sweeper is None:
        configure_realtime()
    assert _sweeper is not None
    return _sweeper


async def startup_realtime() -> None:
    get_router()
    get_sweeper().start()


async def shutdown_realtime() -> None:
    if _sweeper is not None:
        await _sweeper.stop()


__all__ = [
    "configure_realtime",
    "get_router",
    "get_sweeper",
    "shutdown_realtime",
    "startup_realtime",
]
