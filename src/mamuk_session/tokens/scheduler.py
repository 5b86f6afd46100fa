"""Background task that refreshes the access token before it expires."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable, Callable

from mamuk_session.tokens.store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = datetime.timedelta(seconds=60)


class ProactiveRefreshScheduler:
    """Polls ``is_expiring_soon()`` on a fixed interval.

    One scheduler belongs to one session.  ``start()`` is idempotent and
    ``stop()`` cancels the task deterministically; nothing relies on process
    teardown to clear the timer.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresh: Callable[[], Awaitable[bool]],
        interval: datetime.timedelta = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self._store = store
        self._refresh = refresh
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking.  Must be called with a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="token-refresh")
        logger.debug("Proactive refresh started (every %ss)", self._interval.total_seconds())

    def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            logger.debug("Proactive refresh stopped")

    async def tick(self) -> None:
        """Run one check.  Failures are logged and never escape."""
        try:
            if self._store.is_expiring_soon():
                logger.info("Token is expiring soon, refreshing proactively")
                await self._refresh()
        except Exception:
            logger.exception("Proactive token refresh failed")

    async def _loop(self) -> None:
        seconds = self._interval.total_seconds()
        while True:
            await asyncio.sleep(seconds)
            await self.tick()
