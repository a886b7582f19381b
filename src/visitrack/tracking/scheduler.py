"""Delayed callbacks on the running event loop, cancellable as a group."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

__all__ = ["Scheduler"]

logger = logging.getLogger(__name__)


class Scheduler:
    """Best-effort timers (setTimeout analogue).

    Owners call ``cancel_all()`` when they go away so nothing fires against
    stale state.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        delay: float,
        callback: Callable[[], Any],
        *,
        name: str | None = None,
    ) -> asyncio.Task[None]:
        """Run ``callback`` after ``delay`` seconds; awaits it if it returns an awaitable."""

        async def _run() -> None:
            await asyncio.sleep(delay)
            result = callback()
            if inspect.isawaitable(result):
                await result

        task = asyncio.get_running_loop().create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def schedule_once(
        self,
        delay: float,
        callback: Callable[[], Any],
        *,
        name: str,
    ) -> asyncio.Task[None]:
        """Like ``schedule`` but reuses a pending task with the same name."""
        for task in self._tasks:
            if task.get_name() == name and not task.done():
                logger.debug("Scheduled callback %s already pending", name)
                return task
        return self.schedule(delay, callback, name=name)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled callback %s failed", task.get_name(), exc_info=exc)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait for every callback scheduled so far (and any they schedule)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
