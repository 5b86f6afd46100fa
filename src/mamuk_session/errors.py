"""Error taxonomy for the session subsystem.

Every error the package raises derives from ``AuthError`` so callers can catch
the whole family at the UI boundary.  Library errors (``httpx.HTTPError``,
``yaml.YAMLError``) are wrapped with ``raise ... from exc`` at the point where
they cross into this package.

Not every failure is an exception:

  - ``CredentialError`` is absorbed inside the credential store; malformed
    expiry metadata degrades to "unknown expiry".
  - ``RefreshExhaustedError`` is absorbed by the refresh coordinator, which
    logs it and logs the user out.  Callers observe the state transition.
  - A failed role check is a redirect, not an exception.
"""

from __future__ import annotations

import httpx


class AuthError(Exception):
    """Base class for all session subsystem errors."""


class CredentialError(AuthError):
    """Raised when stored token metadata is missing or malformed."""


class RefreshExhaustedError(AuthError):
    """Raised when the refresh-token exchange fails."""


class AuthenticationRejectedError(AuthError):
    """Raised when the identity service rejects a login or registration."""


class NotAuthenticatedError(AuthError):
    """Raised when an operation requires an authenticated session."""


class ProfileFetchFailedError(AuthError):
    """Raised when the current user profile cannot be fetched."""


class ProfileUpdateError(AuthError):
    """Raised when the identity service rejects a profile update."""


class SessionExpiredError(AuthError):
    """Raised when a request is still unauthorized after a refresh attempt."""

    def __init__(self, message: str, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response is not None else None


class ConfigError(AuthError):
    """Raised when the settings file is malformed."""


class RoutePolicyError(AuthError):
    """Raised when the route table is malformed."""
