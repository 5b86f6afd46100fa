"""Client for the identity service endpoints.

Pattern: Identity Broker Client
--------------------------------
The identity service is opaque to this package: it accepts credentials and
hands back ``{user, token, refreshToken, expiresIn}``, or fails.  This module
is the only place that knows the endpoint paths and the response shapes, and
it turns each response into an ``AuthResult`` the session can install.

Older deployments return the user fields flattened next to the token instead
of under ``user``; both shapes are accepted.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from mamuk_session.auth.session import User
from mamuk_session.errors import AuthenticationRejectedError, ProfileFetchFailedError
from mamuk_session.transport.client import AuthenticatedClient

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
REGISTER_PATH = "/auth/register"
REFRESH_PATH = "/auth/refresh-token"
LOGOUT_PATH = "/auth/logout"
PROFILE_PATH = "/users/profile"


@dataclasses.dataclass(frozen=True)
class AuthResult:
    """Credential and user returned by a successful login or registration."""

    token: str
    refresh_token: str | None
    expires_in: Any
    user: User


class IdentityService:
    """Calls the identity endpoints through the authenticated client."""

    def __init__(self, client: AuthenticatedClient) -> None:
        self._client = client

    async def login(self, email: str, password: str) -> AuthResult:
        payload = await self._client.post(LOGIN_PATH, json={"email": email, "password": password})
        result = parse_auth_response(payload)
        logger.info("User %s signed in, roles=%s", result.user.email, sorted(result.user.roles))
        return result

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        payload = await self._client.post(
            REGISTER_PATH,
            json={"name": name, "email": email, "password": password},
        )
        result = parse_auth_response(payload)
        logger.info("User %s registered, roles=%s", result.user.email, sorted(result.user.roles))
        return result

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        return await self._client.post(REFRESH_PATH, json={"refreshToken": refresh_token})

    async def get_profile(self) -> User:
        payload = await self._client.get(PROFILE_PATH)
        user_data = _user_section(payload)
        if not user_data:
            raise ProfileFetchFailedError("Identity service returned an empty profile")
        return User.from_payload(user_data)

    async def update_profile(self, changes: dict[str, Any]) -> dict[str, Any]:
        payload = await self._client.put(PROFILE_PATH, json=changes)
        return _user_section(payload)

    async def logout(self, token: str) -> None:
        await self._client.post(LOGOUT_PATH, headers={"Authorization": f"Bearer {token}"})


def parse_auth_response(payload: Any) -> AuthResult:
    """Build an ``AuthResult`` from either response shape.

    Raises ``AuthenticationRejectedError`` when the response carries no token
    or no user.
    """
    if not isinstance(payload, dict):
        raise AuthenticationRejectedError("Identity service returned an unexpected response")
    token = payload.get("token") or payload.get("accessToken")
    if not token:
        raise AuthenticationRejectedError("Identity service returned no access token")
    user_data = _user_section(payload)
    if not user_data.get("email") and not (user_data.get("id") or user_data.get("_id")):
        raise AuthenticationRejectedError("Identity service returned no user")
    return AuthResult(
        token=token,
        refresh_token=payload.get("refreshToken"),
        expires_in=payload.get("expiresIn"),
        user=User.from_payload(user_data),
    )


def _user_section(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    nested = payload.get("user")
    if isinstance(nested, dict):
        return nested
    return payload
