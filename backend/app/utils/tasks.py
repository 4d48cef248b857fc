"""Managed fire-and-forget tasks for the API process.

The event loop only keeps weak references to tasks, so a bare
``asyncio.create_task`` can be garbage-collected mid-flight. The runner
holds every task until it finishes, logs anything that escapes one, and
lets shutdown (and tests) wait for outstanding work.

Nothing here is durable: tasks still running when the process dies are
lost. Products stranded at "pending" that way are picked up by the
optional startup recovery sweep.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()


class BackgroundTaskRunner:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait until every task, including ones spawned while waiting, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float) -> None:
        """Drain with a grace period, then cancel whatever is still running."""
        if not self._tasks:
            return
        logger.info("background_tasks_draining", pending=len(self._tasks), grace_s=grace_seconds)
        try:
            async with asyncio.timeout(grace_seconds):
                await self.drain()
        except TimeoutError:
            remaining = list(self._tasks)
            logger.warning("background_tasks_abandoned", pending=len(remaining))
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)
