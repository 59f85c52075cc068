"""Timer-based task scheduling on the running event loop.

Retries and deferred sends are re-enqueued as tasks that sleep until their
due time; no worker is held while waiting.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TaskScheduler(Protocol):
    def schedule(
        self,
        delay: float,
        fn: Callable[[], Awaitable[object]],
        *,
        name: str | None = None,
    ) -> None: ...


class AsyncioTaskScheduler:
    """Runs callbacks after a delay as tracked asyncio tasks.

    Args:
        sleep: Awaitable sleep used for the delay; tests pass one that
            advances a ManualClock instead of waiting.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        delay: float,
        fn: Callable[[], Awaitable[object]],
        *,
        name: str | None = None,
    ) -> None:
        task = asyncio.get_running_loop().create_task(self._run(max(delay, 0.0), fn, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, delay: float, fn: Callable[[], Awaitable[object]], name: str | None) -> None:
        await self._sleep(delay)
        try:
            await fn()
        except Exception:
            logger.exception("Scheduled task failed", extra={"task": name, "operation": "scheduler.run"})

    async def join(self) -> None:
        """Wait until every scheduled task, including ones scheduled meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding tasks (shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
