"""Periodic asyncio tasks and reconnect backoff."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


def backoff_delay(retry_count: int, step: float = 2.0, maximum: float = 10.0) -> float:
    """Reconnect delay after ``retry_count`` consecutive failures.

    Grows linearly by ``step`` and is capped at ``maximum``:
    ``min(retry_count * step, maximum)``.

    Examples:
        >>> [backoff_delay(n) for n in range(1, 7)]
        [2.0, 4.0, 6.0, 8.0, 10.0, 10.0]
    """
    return float(min(max(retry_count, 0) * step, maximum))


class PeriodicTask:
    """Runs an async callback every ``interval`` seconds until cancelled.

    A failing callback is logged and the timer keeps going; a tick never
    overlaps the previous one.

    Args:
        name: Used in logs and as the asyncio task name
        interval: Seconds between the end of one tick and the next
        callback: Coroutine function invoked each tick
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Restarting an already running timer is a no-op."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"stepkeeper-{self.name}")
        logger.debug("Started %s timer (every %.1fs)", self.name, self.interval)

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s tick failed", self.name)

    async def cancel(self) -> None:
        """Stop ticking and wait for the task to finish."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        # From inside our own callback: the loop exits once the tick returns
        if task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Cancelled %s timer", self.name)
