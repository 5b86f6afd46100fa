"""HTTP client that attaches the session credential and recovers from 401s.

Pattern: Request Interceptor
-----------------------------
Every outbound call from the application goes through one
``AuthenticatedClient`` bound to a base URL.  It is the only place that
knows how the credential travels on the wire and how an authorization
failure is recovered:

  1. Before sending, if the token is about to expire, ask the refresh
     coordinator for a new one (best effort; the request goes out anyway).
  2. Attach ``Authorization: Bearer <token>`` from the credential store.
  3. On a 401 from a non-identity endpoint, mark the request, refresh once,
     and resend the *same* request with the new token.  If the credential
     was already rotated after this request went out, the 401 belongs to the
     old token: resend with the current one instead of refreshing again.
  4. If that is not possible, or the retried call is still unauthorized,
     send the user to the sign-in page with the current location preserved
     and raise ``SessionExpiredError`` to the caller.

Identity endpoints (login, register, refresh, logout) are never retried:
a 401 from the refresh endpoint that triggered another refresh would loop
forever.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, NoReturn
from urllib.parse import urlsplit

import httpx

from mamuk_session.errors import AuthError, SessionExpiredError
from mamuk_session.routing.navigation import Navigator, build_sign_in_url
from mamuk_session.tokens.store import CredentialStore

logger = logging.getLogger(__name__)

IDENTITY_PATHS: tuple[str, ...] = (
    "/auth/login",
    "/auth/register",
    "/auth/refresh-token",
    "/auth/logout",
)

RETRY_MARKER = "mamuk_retry"


def is_identity_endpoint(url: str | httpx.URL) -> bool:
    path = httpx.URL(str(url)).path.rstrip("/")
    return any(path.endswith(identity_path) for identity_path in IDENTITY_PATHS)


class AuthenticatedClient:
    """``httpx.AsyncClient`` wrapper carrying the bearer token and 401 recovery."""

    def __init__(
        self,
        base_url: str,
        store: CredentialStore,
        navigator: Navigator,
        *,
        sign_in_path: str = "/login",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        refresh: Callable[[], Awaitable[bool]] | None = None,
    ) -> None:
        self._store = store
        self._navigator = navigator
        self._sign_in_path = sign_in_path
        self._refresh = refresh
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def bind_refresh(self, refresh: Callable[[], Awaitable[bool]]) -> None:
        """Install the refresh coordinator once it exists."""
        self._refresh = refresh

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Raises ``httpx.HTTPStatusError`` for error statuses and
        ``SessionExpiredError`` when a 401 survives the refresh-and-retry.
        """
        identity = is_identity_endpoint(url)
        if not identity:
            await self._refresh_if_expiring()

        request = self._client.build_request(method, url, json=json, params=params, headers=headers)
        explicit_auth = headers is not None and any(k.lower() == "authorization" for k in headers)
        sent_token = None if explicit_auth else self._authorize(request)

        response = await self._client.send(request)
        if response.status_code != 401 or identity or request.extensions.get(RETRY_MARKER):
            if response.status_code == 401 and not identity:
                self._expire_session(response)
            response.raise_for_status()
            return response

        request.extensions[RETRY_MARKER] = True
        current = self._store.get_token()
        if current and current != sent_token:
            logger.debug("Credential rotated since %s %s was sent; not refreshing again", method, request.url.path)
            refreshed = True
        elif self._refresh is not None:
            refreshed = await self._refresh()
        else:
            refreshed = False
        if refreshed:
            logger.debug("Retrying %s %s with refreshed token", method, request.url.path)
            self._authorize(request)
            response = await self._client.send(request)
            if response.status_code != 401:
                response.raise_for_status()
                return response

        self._expire_session(response)

    async def get(self, url: str, **kwargs: Any) -> Any:
        return _decode(await self.request("GET", url, **kwargs))

    async def post(self, url: str, **kwargs: Any) -> Any:
        return _decode(await self.request("POST", url, **kwargs))

    async def put(self, url: str, **kwargs: Any) -> Any:
        return _decode(await self.request("PUT", url, **kwargs))

    async def delete(self, url: str, **kwargs: Any) -> Any:
        return _decode(await self.request("DELETE", url, **kwargs))

    # -- private helpers -----------------------------------------------------

    async def _refresh_if_expiring(self) -> None:
        if self._refresh is None or not self._store.is_expiring_soon():
            return
        try:
            await self._refresh()
        except (httpx.HTTPError, AuthError) as exc:
            logger.warning("Token refresh before request failed: %s", exc)

    def _authorize(self, request: httpx.Request) -> str | None:
        """Attach the current bearer token and return it."""
        token = self._store.get_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        elif "Authorization" in request.headers:
            del request.headers["Authorization"]
        return token

    def _expire_session(self, response: httpx.Response) -> NoReturn:
        location = self._navigator.current_location()
        if urlsplit(location).path.rstrip("/") != self._sign_in_path.rstrip("/"):
            self._navigator.redirect(build_sign_in_url(self._sign_in_path, location))
        logger.warning("Session expired during %s %s", response.request.method, response.request.url.path)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SessionExpiredError("Session expired; please sign in again", response=response) from exc


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    return response.json()
