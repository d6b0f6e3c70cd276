"""Deferred best-effort cleanup of artifacts produced by presets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

CleanupCallback = Callable[[], Awaitable[None]]


class CleanupScheduler:
    """Runs cleanup callbacks after a delay as detached asyncio tasks.

    Failures are logged and dropped; nothing is retried.  Outstanding tasks
    are tracked so :meth:`shutdown` can cancel them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(
        self,
        delay: float,
        callback: CleanupCallback,
        label: str = "",
    ) -> asyncio.Task[None]:
        """Run *callback* after *delay* seconds without blocking the caller."""
        task = asyncio.get_running_loop().create_task(self._run(delay, callback, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        """Number of cleanups that have not run yet."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel every outstanding cleanup."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.debug("Cleanup scheduler shut down (%d cancelled)", len(tasks))

    async def _run(self, delay: float, callback: CleanupCallback, label: str) -> None:
        await asyncio.sleep(delay)
        try:
            await callback()
            logger.debug("Cleanup %s done", label)
        except Exception:  # noqa: BLE001
            logger.exception("Cleanup %s failed", label)
