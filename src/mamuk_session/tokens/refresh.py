"""Refresh-token exchange with a single-flight guarantee.

Pattern: Single-Flight
-----------------------
A burst of requests that all hit a 401 at once, plus the background scheduler
noticing the same expiry, must produce exactly *one* call to the refresh
endpoint.  The coordinator keeps one shared future for the exchange in
progress; every caller that arrives while it is outstanding awaits that same
future and observes the same outcome.

The exchange is wrapped in ``asyncio.shield`` so that a caller being
cancelled (its request timed out, its page was left) does not cancel the
exchange other callers are waiting on.

Failure is terminal for the session: the coordinator logs the user out and
returns ``False``.  It never retries on its own.  If a logout happens while
the exchange is outstanding, the result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from mamuk_session.errors import AuthError, RefreshExhaustedError
from mamuk_session.tokens.store import CredentialStore

logger = logging.getLogger(__name__)

RefreshExchange = Callable[[str], Awaitable[dict[str, Any]]]


class RefreshCoordinator:
    """Owns the refresh-in-flight marker for one session."""

    def __init__(
        self,
        store: CredentialStore,
        exchange: RefreshExchange,
        *,
        on_failure: Callable[[], None],
        on_success: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._exchange = exchange
        self._on_failure = on_failure
        self._on_success = on_success
        self._inflight: asyncio.Future[bool] | None = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    async def refresh(self) -> bool:
        """Install a fresh access token.  Returns ``True`` on success."""
        refresh_token = self._store.get_refresh_token()
        if not refresh_token:
            logger.info("No refresh token available; cannot refresh session")
            return False

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run(refresh_token))
        else:
            logger.debug("Refresh already in flight; joining it")
        return await asyncio.shield(self._inflight)

    # -- private helpers -----------------------------------------------------

    async def _run(self, refresh_token: str) -> bool:
        epoch = self._store.epoch
        try:
            try:
                payload = await self._exchange(refresh_token)
                token, rotated, expires_in = _parse_refresh_payload(payload)
            except (httpx.HTTPError, AuthError, ValueError) as exc:
                return self._fail(epoch, exc)

            if self._store.epoch != epoch:
                logger.info("Session ended while refreshing; discarding refreshed token")
                return False

            self._store.set_token(token, expires_in)
            if rotated:
                self._store.set_refresh_token(rotated)
            logger.info("Access token refreshed")
            if self._on_success is not None:
                self._on_success(token)
            return True
        finally:
            self._inflight = None

    def _fail(self, epoch: int, exc: Exception) -> bool:
        error = exc if isinstance(exc, RefreshExhaustedError) else RefreshExhaustedError(str(exc))
        if self._store.epoch != epoch:
            logger.info("Refresh failed after session ended: %s", error)
            return False
        logger.error("Token refresh failed, logging out: %s", error)
        self._on_failure()
        return False


def _parse_refresh_payload(payload: Any) -> tuple[str, str | None, Any]:
    if not isinstance(payload, dict):
        raise RefreshExhaustedError("Refresh response is not an object")
    token = payload.get("token") or payload.get("accessToken")
    if not token:
        raise RefreshExhaustedError("Refresh response carried no access token")
    return token, payload.get("refreshToken"), payload.get("expiresIn")
