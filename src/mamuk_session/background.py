"""Fire-and-forget helpers for work nobody waits on."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Holds references to detached tasks and logs how they fail.

    The event loop keeps only weak references to tasks, so a detached task
    must be referenced somewhere until it finishes.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task[Any] | None:
        """Schedule *coro* on the running loop; ``None`` when there is no loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; skipped %s", description)
            return None
        task = loop.create_task(coro, name=description)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, description))
        return task

    async def drain(self) -> None:
        """Wait for every outstanding task (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _finished(self, task: asyncio.Task[Any], description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("%s failed: %s", description, exc)
