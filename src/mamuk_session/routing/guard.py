"""Role-gated route authorization.

The guard answers one question on every navigation: may the current session
open this view?  Four outcomes:

  - anonymous visitor on a private view: redirect to sign-in, carrying the
    requested path and query as ``returnUrl`` so sign-in can resume it;
  - signed-in user without any of the view's roles: redirect to the default
    landing view.  This is a silent redirect, never an exception;
  - signed-in user on a public view marked ``redirect_authenticated``
    (landing page, sign-in): redirect to the home view for their role;
  - otherwise: allowed.

Entering a private view while signed in also refreshes the user's profile in
the background, so role changes made by an admin reach the session without a
new sign-in.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable
from urllib.parse import urlsplit

from mamuk_session.auth.roles import Role, has_any_role
from mamuk_session.auth.state import SessionState
from mamuk_session.routing.navigation import build_sign_in_url
from mamuk_session.routing.policy import RoutePolicy, home_for

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RouteDecision:
    """Outcome of an authorization check.

    Attributes:
        allowed:     Whether the guarded content may be rendered.
        redirect_to: Where to send the user instead, when not allowed.
        reason:      ``public``, ``signed_in``, ``authorized``, ``unauthenticated``
                     or ``forbidden``.
    """

    allowed: bool
    redirect_to: str | None = None
    reason: str = "authorized"


class RouteAuthorizer:
    """Decides navigation against a ``SessionState`` and an optional route table."""

    def __init__(
        self,
        session: SessionState,
        policy: RoutePolicy | None = None,
        *,
        sign_in_path: str | None = None,
        default_path: str | None = None,
    ) -> None:
        self._session = session
        self._policy = policy
        self._sign_in_path = sign_in_path or session.settings.sign_in_path
        self._default_path = default_path or session.settings.default_path

    def authorize(
        self,
        location: str,
        allowed_roles: Iterable[str | Role] | None = None,
    ) -> RouteDecision:
        """Decide whether *location* (path plus optional query) may be opened.

        Explicit *allowed_roles* take precedence over the route table.
        """
        required: list[str | Role]
        if allowed_roles is not None:
            required = list(allowed_roles)
        elif self._policy is not None:
            access = self._policy.resolve(location)
            if access.public:
                return self._public(location, access.redirect_authenticated)
            required = sorted(access.allowed_roles)
        else:
            required = []

        if not self._session.is_authenticated:
            return RouteDecision(
                allowed=False,
                redirect_to=build_sign_in_url(self._sign_in_path, location),
                reason="unauthenticated",
            )

        user = self._session.user
        if required and (user is None or not has_any_role(user.roles, required)):
            return RouteDecision(allowed=False, redirect_to=self._default_path, reason="forbidden")

        return RouteDecision(allowed=True)

    def home_path(self) -> str:
        """Home view for the signed-in user's primary role, ``/`` when anonymous."""
        user = self._session.user
        if self._policy is not None:
            return self._policy.home_for(user)
        return home_for(user)

    async def enter(
        self,
        location: str | None = None,
        allowed_roles: Iterable[str | Role] | None = None,
    ) -> RouteDecision:
        """Authorize *location* (default: the navigator's current one) and act on it.

        Redirects through the session's navigator when the decision says so,
        and refreshes the profile in the background when the user is signed in.
        """
        navigator = self._session.navigator
        location = location or navigator.current_location()
        decision = self.authorize(location, allowed_roles)

        if self._session.is_authenticated and decision.reason in ("authorized", "forbidden"):
            self._session.background.spawn(
                self._session.refresh_user_data(),
                "profile refresh",
            )

        if decision.redirect_to is not None:
            logger.info("Access to %s denied (%s)", location, decision.reason)
            navigator.redirect(decision.redirect_to)
        return decision

    # -- private helpers -----------------------------------------------------

    def _public(self, location: str, redirect_authenticated: bool) -> RouteDecision:
        if redirect_authenticated and self._session.is_authenticated:
            home = self.home_path()
            if (urlsplit(location).path.rstrip("/") or "/") != home:
                return RouteDecision(allowed=False, redirect_to=home, reason="signed_in")
        return RouteDecision(allowed=True, reason="public")
