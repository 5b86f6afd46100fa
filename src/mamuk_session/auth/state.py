"""Authoritative session state and the operations that move it.

Pattern: Single Owning Session Object
--------------------------------------
One ``SessionState`` is created at application start-up and handed to every
consumer (the route guard, the CLI, application services that need the
authenticated client).  It owns every moving part of the session lifecycle:

  - the ``CredentialStore`` (token triple, durable),
  - the ``AuthenticatedClient`` (bearer header, 401 recovery),
  - the ``RefreshCoordinator`` (single-flight refresh marker),
  - the ``ProactiveRefreshScheduler`` (background expiry check).

Nothing lives in module globals, so start and stop are explicit: the
scheduler starts when the session becomes authenticated and is cancelled by
``logout()`` or ``close()``.

State machine::

    Anonymous --login/register--> Authenticated
    Authenticated --logout / refresh exhaustion / 401 on profile--> Anonymous

``is_loading`` is an orthogonal flag raised while a login, registration or
profile update is outstanding.  Concurrent logins are not fenced; the last one
to finish wins.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Awaitable, Callable, Iterable

import httpx

from mamuk_session.auth.identity import AuthResult, IdentityService
from mamuk_session.auth.roles import Role, has_any_role
from mamuk_session.auth.session import SessionSnapshot, User
from mamuk_session.background import BackgroundTasks
from mamuk_session.config import Settings
from mamuk_session.errors import (
    AuthenticationRejectedError,
    NotAuthenticatedError,
    ProfileFetchFailedError,
    ProfileUpdateError,
    SessionExpiredError,
)
from mamuk_session.routing.navigation import HistoryNavigator, Navigator
from mamuk_session.tokens.refresh import RefreshCoordinator
from mamuk_session.tokens.scheduler import ProactiveRefreshScheduler
from mamuk_session.tokens.storage import JsonFileStorage, KeyValueStorage
from mamuk_session.tokens.store import CredentialStore, utcnow
from mamuk_session.transport.client import AuthenticatedClient

logger = logging.getLogger(__name__)


class SessionState:
    """``{is_authenticated, user, token, is_loading, error}`` plus its operations."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        storage: KeyValueStorage | None = None,
        navigator: Navigator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._settings = settings or Settings()
        self._storage = storage if storage is not None else JsonFileStorage(self._settings.storage_path)
        self._navigator = navigator or HistoryNavigator()
        self._snapshot_key = f"{self._settings.storage_namespace}auth_storage"

        self._store = CredentialStore(
            self._storage,
            namespace=self._settings.storage_namespace,
            refresh_threshold=self._settings.refresh_threshold,
            clock=clock,
        )
        self._client = AuthenticatedClient(
            self._settings.api_base_url,
            self._store,
            self._navigator,
            sign_in_path=self._settings.sign_in_path,
            timeout=self._settings.request_timeout,
            transport=transport,
        )
        self._identity = IdentityService(self._client)
        self._refresher = RefreshCoordinator(
            self._store,
            self._identity.refresh_token,
            on_failure=self.logout,
            on_success=self._token_refreshed,
        )
        self._client.bind_refresh(self._refresher.refresh)
        self._scheduler = ProactiveRefreshScheduler(
            self._store,
            self._refresher.refresh,
            interval=self._settings.refresh_interval,
        )
        self._background = BackgroundTasks()

        self._is_authenticated = False
        self._user: User | None = None
        self._token: str | None = None
        self._is_loading = False
        self._error: str | None = None

    # -- observable state ----------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._is_authenticated

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    # -- collaborators -------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def credentials(self) -> CredentialStore:
        return self._store

    @property
    def client(self) -> AuthenticatedClient:
        """Authenticated client for application requests."""
        return self._client

    @property
    def navigator(self) -> Navigator:
        return self._navigator

    @property
    def refresher(self) -> RefreshCoordinator:
        return self._refresher

    @property
    def scheduler(self) -> ProactiveRefreshScheduler:
        return self._scheduler

    @property
    def background(self) -> BackgroundTasks:
        return self._background

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            is_authenticated=self._is_authenticated,
            user=self._user,
            token=self._token,
        )

    def has_role(self, role: str | Role) -> bool:
        return self.has_any_role([role])

    def has_any_role(self, roles: Iterable[str | Role]) -> bool:
        return self._user is not None and has_any_role(self._user.roles, roles)

    # -- lifecycle -----------------------------------------------------------

    async def __aenter__(self) -> SessionState:
        await self.bootstrap()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def restore(self) -> bool:
        """Hydrate from the persisted snapshot.  Returns ``is_authenticated``.

        A snapshot that is unreadable, breaks the session invariant, or whose
        credential has since been removed is discarded.
        """
        raw = self._storage.get(self._snapshot_key)
        if not raw:
            return False
        try:
            snapshot = SessionSnapshot.from_json(raw)
        except ValueError as exc:
            logger.warning("Discarding unreadable session snapshot: %s", exc)
            self._storage.remove(self._snapshot_key)
            return False

        token = self._store.get_token()
        if not snapshot.is_authenticated or not snapshot.is_consistent or token is None:
            logger.info("Discarding stale session snapshot")
            self._storage.remove(self._snapshot_key)
            return False

        self._user = snapshot.user
        self._token = token
        self._is_authenticated = True
        logger.info("Restored session for %s", self._user.email if self._user else "unknown user")
        return True

    async def bootstrap(self) -> bool:
        """Restore a persisted session and start background refresh for it."""
        if self.restore():
            self._scheduler.start()
        return self._is_authenticated

    async def close(self) -> None:
        """Stop background work and release the transport.  State is kept."""
        self._scheduler.stop()
        await self._background.drain()
        await self._client.aclose()

    # -- operations ----------------------------------------------------------

    async def login(self, email: str, password: str) -> User:
        """Sign in.  Raises ``AuthenticationRejectedError`` on failure."""
        return await self._authenticate(
            lambda: self._identity.login(email, password),
            "Invalid email or password",
        )

    async def register(self, name: str, email: str, password: str) -> User:
        """Create an account and sign in.  Raises ``AuthenticationRejectedError``."""
        return await self._authenticate(
            lambda: self._identity.register(name, email, password),
            "Registration failed",
        )

    def logout(self) -> None:
        """End the session.  Synchronous and idempotent.

        The credential is cleared before anything else can run, so a refresh
        still in flight cannot re-install a token.  The server is told on a
        best-effort basis.
        """
        previous_token = self._store.get_token()
        was_authenticated = self._is_authenticated

        self._scheduler.stop()
        self._store.remove_tokens()
        self._storage.remove(self._snapshot_key)
        self._is_authenticated = False
        self._user = None
        self._token = None
        self._is_loading = False
        self._error = None

        if previous_token:
            self._background.spawn(self._identity.logout(previous_token), "logout notification")
        if was_authenticated:
            logger.info("Session ended")

    async def update_user(self, changes: dict[str, Any]) -> User:
        """Send *changes* to the profile endpoint and merge the response."""
        if not self._is_authenticated or self._user is None:
            raise NotAuthenticatedError("Sign in before updating the profile")

        epoch = self._store.epoch
        self._is_loading = True
        self._error = None
        try:
            payload = await self._identity.update_profile(changes)
        except SessionExpiredError as exc:
            self._error = str(exc)
            raise
        except httpx.HTTPStatusError as exc:
            self._error = _error_message(exc.response, "Could not update your profile")
            raise ProfileUpdateError(self._error) from exc
        except httpx.HTTPError as exc:
            self._error = "Could not reach the server to update your profile"
            raise ProfileUpdateError(self._error) from exc
        except ValueError as exc:
            self._error = "Server returned an unreadable profile"
            raise ProfileUpdateError(self._error) from exc
        finally:
            self._is_loading = False

        if self._store.epoch != epoch or self._user is None:
            raise NotAuthenticatedError("Session ended during the profile update")
        self._user = self._user.merged(payload)
        self._persist()
        return self._user

    async def refresh_user_data(self) -> User | None:
        """Re-fetch the profile.  No-op while anonymous.

        401 ends the session.  Any other failure, 404 included, leaves the
        session authenticated and raises ``ProfileFetchFailedError``.
        """
        if not self._is_authenticated:
            return None

        epoch = self._store.epoch
        try:
            user = await self._identity.get_profile()
        except SessionExpiredError:
            logger.warning("Profile fetch unauthorized; ending session")
            self.logout()
            return None
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 401:
                logger.warning("Profile fetch unauthorized; ending session")
                self.logout()
                return None
            if status == 404:
                self._error = "Profile endpoint not found; check the API base URL"
            else:
                self._error = _error_message(exc.response, "Could not load your profile")
            raise ProfileFetchFailedError(self._error) from exc
        except httpx.HTTPError as exc:
            self._error = "Could not reach the server to load your profile"
            raise ProfileFetchFailedError(self._error) from exc
        except ValueError as exc:
            self._error = "Server returned an unreadable profile"
            raise ProfileFetchFailedError(self._error) from exc
        except ProfileFetchFailedError as exc:
            self._error = str(exc)
            raise

        if self._store.epoch != epoch or not self._is_authenticated:
            return None
        self._user = user
        self._persist()
        return user

    def clear_error(self) -> None:
        self._error = None

    # -- private helpers -----------------------------------------------------

    async def _authenticate(
        self,
        call: Callable[[], Awaitable[AuthResult]],
        fallback: str,
    ) -> User:
        self._is_loading = True
        self._error = None
        try:
            try:
                result = await call()
            except httpx.HTTPStatusError as exc:
                self._error = _error_message(exc.response, fallback)
                raise AuthenticationRejectedError(self._error) from exc
            except httpx.HTTPError as exc:
                self._error = "Could not reach the identity service"
                raise AuthenticationRejectedError(self._error) from exc
            except ValueError as exc:
                self._error = "Identity service returned an unreadable response"
                raise AuthenticationRejectedError(self._error) from exc
            except AuthenticationRejectedError as exc:
                self._error = str(exc)
                raise
            self._install(result)
            return result.user
        finally:
            self._is_loading = False

    def _install(self, result: AuthResult) -> None:
        self._store.set_token(result.token, result.expires_in)
        if result.refresh_token:
            self._store.set_refresh_token(result.refresh_token)
        self._user = result.user
        self._token = result.token
        self._is_authenticated = True
        self._persist()
        self._scheduler.start()

    def _token_refreshed(self, token: str) -> None:
        if not self._is_authenticated:
            return
        self._token = token
        self._persist()

    def _persist(self) -> None:
        self._storage.set(self._snapshot_key, self.snapshot().to_json())


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Human-readable message from an error response body, or *fallback*."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback
