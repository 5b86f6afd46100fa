"""Shared fixtures for tests.

``FakeIdentityServer`` stands in for the identity service behind an
``httpx.MockTransport``: it issues tokens, rotates them on refresh, rejects
stale ones with 401, and records every call so tests can count exchanges.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import pathlib
from typing import Any

import httpx
import pytest

from mamuk_session.auth.state import SessionState
from mamuk_session.config import Settings
from mamuk_session.routing.navigation import HistoryNavigator
from mamuk_session.routing.policy import RoutePolicy
from mamuk_session.tokens.storage import MemoryStorage

BASE_URL = "http://testserver/api"
START = datetime.datetime(2026, 3, 1, 9, 0, tzinfo=datetime.UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime.datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


class FakeIdentityServer:
    """In-process identity service."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {
            "customer@example.com": {"_id": "1", "name": "John Doe", "role": "customer"},
            "coach@example.com": {"_id": "2", "name": "Jane Smith", "role": "coach"},
            "admin@example.com": {"_id": "3", "name": "Admin User", "roles": ["admin"]},
            "multi@example.com": {"_id": "4", "name": "Multi Role", "roles": ["coach", "customer"]},
        }
        self.calls: list[tuple[str, str]] = []
        self.authorizations: list[tuple[str, str | None]] = []
        self.valid_tokens: set[str] = set()
        self.refresh_tokens: set[str] = set()
        self.expires_in: Any = "15m"
        self.issued = 0
        self.refresh_count = 0
        self.refresh_gate: asyncio.Event | None = None
        self.refresh_started: asyncio.Event | None = None
        self.profile_status: int | None = None
        self.signed_in: str | None = None
        self.unreadable_paths: set[str] = set()
        # Holds the next 401 until the gate opens; unauthorized_held fires once it is held.
        self.unauthorized_gate: asyncio.Event | None = None
        self.unauthorized_held: asyncio.Event | None = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def revoke_access_tokens(self) -> None:
        self.valid_tokens.clear()

    def revoke_refresh_tokens(self) -> None:
        self.refresh_tokens.clear()

    def calls_to(self, path: str) -> int:
        return sum(1 for _, p in self.calls if p == path)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))
        self.authorizations.append((path, request.headers.get("Authorization")))
        body = json.loads(request.content) if request.content else {}
        if path in self.unreadable_paths:
            return httpx.Response(200, text="<html>proxy error</html>")

        if path == "/auth/login":
            return self._login(body)
        if path == "/auth/register":
            return self._register(body)
        if path == "/auth/refresh-token":
            return await self._refresh(body)
        if path == "/auth/logout":
            return httpx.Response(204)

        if not self._authorized(request):
            await self._hold_unauthorized()
            return httpx.Response(401, json={"message": "Token expired"})
        if path == "/users/profile":
            return self._profile(request.method, body)
        if path == "/workouts":
            return httpx.Response(200, json={"workouts": [{"id": "42"}]})
        if path == "/broken":
            return httpx.Response(500, json={"message": "Database unavailable"})
        return httpx.Response(404, json={"message": "Not found"})

    # -- endpoint handlers ---------------------------------------------------

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        email = body.get("email")
        if email not in self.users or body.get("password") != "password":
            return httpx.Response(401, json={"message": "Invalid email or password"})
        return self._issue(email)

    def _register(self, body: dict[str, Any]) -> httpx.Response:
        email = body.get("email")
        if email in self.users:
            return httpx.Response(409, json={"message": "Email already in use"})
        self.users[email] = {"_id": str(len(self.users) + 1), "name": body.get("name"), "role": "customer"}
        return self._issue(email)

    async def _refresh(self, body: dict[str, Any]) -> httpx.Response:
        self.refresh_count += 1
        if self.refresh_started is not None:
            self.refresh_started.set()
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        presented = body.get("refreshToken")
        if presented not in self.refresh_tokens:
            return httpx.Response(401, json={"message": "Invalid refresh token"})
        self.refresh_tokens.discard(presented)
        self.issued += 1
        token, refresh = f"access-{self.issued}", f"refresh-{self.issued}"
        self.valid_tokens = {token}
        self.refresh_tokens.add(refresh)
        return httpx.Response(200, json={"token": token, "refreshToken": refresh, "expiresIn": self.expires_in})

    def _profile(self, method: str, body: dict[str, Any]) -> httpx.Response:
        if self.profile_status is not None:
            return httpx.Response(self.profile_status, json={"message": "Profile unavailable"})
        assert self.signed_in is not None
        record = self.users[self.signed_in]
        if method == "PUT":
            record.update(body)
        return httpx.Response(200, json={**record, "email": self.signed_in})

    # -- private helpers -----------------------------------------------------

    def _issue(self, email: str) -> httpx.Response:
        self.issued += 1
        token, refresh = f"access-{self.issued}", f"refresh-{self.issued}"
        self.valid_tokens = {token}
        self.refresh_tokens = {refresh}
        self.signed_in = email
        return httpx.Response(200, json={
            "user": {**self.users[email], "email": email},
            "token": token,
            "refreshToken": refresh,
            "expiresIn": self.expires_in,
        })

    async def _hold_unauthorized(self) -> None:
        gate, self.unauthorized_gate = self.unauthorized_gate, None
        if gate is None:
            return
        if self.unauthorized_held is not None:
            self.unauthorized_held.set()
        await gate.wait()

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        return header.removeprefix("Bearer ") in self.valid_tokens


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def server() -> FakeIdentityServer:
    return FakeIdentityServer()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_base_url=BASE_URL)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def navigator() -> HistoryNavigator:
    return HistoryNavigator(start="/dashboard")


@pytest.fixture
def session(
    settings: Settings,
    storage: MemoryStorage,
    navigator: HistoryNavigator,
    server: FakeIdentityServer,
    clock: FakeClock,
) -> SessionState:
    return SessionState(
        settings,
        storage=storage,
        navigator=navigator,
        transport=server.transport(),
        clock=clock,
    )


@pytest.fixture
def route_policy() -> RoutePolicy:
    """Return a RoutePolicy loaded from the real routes.yaml."""
    real_path = pathlib.Path(__file__).resolve().parents[1] / "policies" / "routes.yaml"
    return RoutePolicy(policy_path=real_path)
