"""Credential store: the single owner of the access/refresh token pair.

Pattern: Narrow Shared Resource
--------------------------------
The credential is the one piece of mutable state that the interceptor, the
refresh coordinator, the background scheduler and the session all share.
They reach it only through this class.  Every mutator writes through to the
durable backend synchronously, and readers never block.

Expiry is always *derived*: callers hand over the server's duration code and
the store computes the absolute instant.  If the code cannot be parsed the
token is still stored but its expiry is unknown, and an unknown expiry never
counts as "expiring soon".

The store also keeps a session *epoch* which ``remove_tokens()`` bumps.  A
refresh that started before a logout compares epochs before writing back, so
it cannot re-authenticate a user who has already signed out.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable

from mamuk_session.errors import CredentialError
from mamuk_session.tokens.expiry import compute_expiry
from mamuk_session.tokens.storage import KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_THRESHOLD = datetime.timedelta(minutes=5)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class CredentialStore:
    """Reads and writes the token triple through a ``KeyValueStorage``."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        namespace: str = "mamuk_",
        refresh_threshold: datetime.timedelta = DEFAULT_REFRESH_THRESHOLD,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._token_key = f"{namespace}token"
        self._refresh_key = f"{namespace}refresh_token"
        self._expiry_key = f"{namespace}token_expiry"
        self._refresh_threshold = refresh_threshold
        self._clock = clock
        self._epoch = 0

    @property
    def epoch(self) -> int:
        """Incremented every time the credential is removed."""
        return self._epoch

    @property
    def refresh_threshold(self) -> datetime.timedelta:
        return self._refresh_threshold

    def now(self) -> datetime.datetime:
        return self._clock()

    # -- access token --------------------------------------------------------

    def get_token(self) -> str | None:
        return self._storage.get(self._token_key)

    def set_token(self, token: str, expires_in: Any = None) -> None:
        """Store *token*; derive its expiry from *expires_in* when given.

        An unparseable *expires_in* leaves the expiry unknown.  A stale expiry
        from the previous token is never kept.
        """
        self._storage.set(self._token_key, token)
        expires_at = compute_expiry(self.now(), expires_in) if expires_in is not None else None
        if expires_at is None:
            if expires_in is not None:
                logger.warning("Unrecognised expiresIn %r; token expiry unknown", expires_in)
            self._storage.remove(self._expiry_key)
            return
        self._storage.set(self._expiry_key, expires_at.isoformat())
        logger.debug("Access token stored, expires at %s", expires_at.isoformat())

    # -- refresh token -------------------------------------------------------

    def get_refresh_token(self) -> str | None:
        return self._storage.get(self._refresh_key)

    def set_refresh_token(self, token: str) -> None:
        self._storage.set(self._refresh_key, token)

    # -- lifecycle -----------------------------------------------------------

    def remove_tokens(self) -> None:
        """Clear the whole credential and invalidate in-flight refreshes."""
        self._epoch += 1
        self._storage.remove(self._token_key)
        self._storage.remove(self._refresh_key)
        self._storage.remove(self._expiry_key)

    def get_expiry(self) -> datetime.datetime | None:
        """Return the stored expiry instant, or ``None`` when unknown."""
        try:
            return self._read_expiry()
        except CredentialError as exc:
            logger.warning("Treating token expiry as unknown: %s", exc)
            return None

    def is_expiring_soon(self) -> bool:
        """True when less than the refresh threshold remains on the token."""
        expires_at = self.get_expiry()
        if expires_at is None:
            return False
        return expires_at - self.now() < self._refresh_threshold

    # -- private helpers -----------------------------------------------------

    def _read_expiry(self) -> datetime.datetime | None:
        raw = self._storage.get(self._expiry_key)
        if not raw:
            return None
        try:
            expires_at = datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise CredentialError(f"Malformed token expiry {raw!r}") from exc
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=datetime.UTC)
        return expires_at
