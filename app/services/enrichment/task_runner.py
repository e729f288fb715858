"""
Detached background tasks for enrichment.

Jobs run as fire-and-forget asyncio tasks so triggers return immediately.
The runner keeps a strong reference to every task (the event loop only keeps
weak ones), logs crashes, and cancels pending retry timers on shutdown.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CoroutineFactory = Callable[[], Awaitable[Any]]


class DetachedTaskRunner:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[Any], *, name: str | None = None) -> asyncio.Task:
        """Start ``coro`` now without awaiting it."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._track(task)
        return task

    def spawn_later(
        self, delay_seconds: float, factory: CoroutineFactory, *, name: str | None = None
    ) -> asyncio.Task:
        """Sleep ``delay_seconds`` in the background, then run ``factory()``."""

        async def _deferred() -> Any:
            await asyncio.sleep(max(delay_seconds, 0.0))
            return await factory()

        return self.spawn(_deferred(), name=name)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background enrichment task crashed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until every tracked task has finished (tests and graceful drain)."""
        while self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
            if timeout is not None:
                return

    async def shutdown(self) -> None:
        """Cancel every pending task; in-memory retry timers are lost here."""
        if not self._tasks:
            return

        pending = list(self._tasks)
        logger.info("Cancelling background enrichment tasks", count=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


# Shared instance for application use
task_runner = DetachedTaskRunner()
