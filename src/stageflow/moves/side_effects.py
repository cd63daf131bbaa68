"""Bounded best-effort queue for move side effects.

History appends, webhook announcements and required-task creation run here,
decoupled from the move result: the executor submits them and returns
without awaiting them. A single background worker runs effects in
submission order. Failures are logged and counted, never raised; when the
queue is full new effects are dropped with a warning instead of blocking
the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SideEffect = Callable[[], Awaitable[Any]]


class SideEffectQueue:
    """Run fire-and-forget coroutines on one background worker.

    The worker task is created lazily on the first submit, so the queue
    must be used from inside a running event loop.

    Args:
        maxsize: Maximum number of queued (not yet started) effects.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[tuple[str, SideEffect]] = asyncio.Queue(
            maxsize=maxsize
        )
        self._worker: asyncio.Task | None = None
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    def submit(self, name: str, effect: SideEffect) -> bool:
        """Queue an effect. Returns False if it was dropped because the queue is full."""
        self._ensure_worker()
        try:
            self._queue.put_nowait((name, effect))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "side_effects.dropped",
                effect=name,
                queue_size=self._queue.qsize(),
            )
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued effect has run."""
        await self._queue.join()

    async def close(self) -> None:
        """Drain pending effects, then stop the worker."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            loop = asyncio.get_running_loop()
            self._worker = loop.create_task(self._run(), name="stageflow_side_effects")

    async def _run(self) -> None:
        while True:
            name, effect = await self._queue.get()
            try:
                await effect()
                self.completed += 1
            except Exception:
                self.failed += 1
                logger.warning("side_effects.failed", effect=name, exc_info=True)
            finally:
                self._queue.task_done()
