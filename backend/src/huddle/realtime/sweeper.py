"""Periodic expiry of idle private conversations."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable

from .private_chats import PrivatePair
from .router import BroadcastRouter

logger = logging.getLogger(__name__)


class PrivateChatSweeper:
    """Run :meth:`BroadcastRouter.sweep_private_chats` on a fixed period.

    ``clock`` feeds the timestamps compared against the inactivity window and
    ``sleep`` paces the loop, so tests can drive both without waiting.
    """

    def __init__(
        self,
        router: BroadcastRouter,
        *,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self._router = router
        self._interval = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task[Any] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: float | None = None) -> list[PrivatePair]:
        return await self._router.sweep_private_chats(self._clock() if now is None else now)

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Private chat sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="huddle-private-chat-sweeper")
        logger.info("Private chat sweeper started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Private chat sweeper stopped")
