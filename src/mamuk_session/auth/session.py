"""Session data carried through the application.

Pattern: Normalize Once
------------------------
The identity service returns user records whose shape drifted over time:
``_id`` or ``id``, a single ``role`` or a ``roles`` list, plus any number of
profile fields.  ``User.from_payload`` resolves all of that once, when the
session is installed.  Everything downstream (the route guard, the CLI,
persistence) reads one normalized, immutable shape.

``SessionSnapshot`` is the persisted subset of the session state.  It is
written as JSON on every transition so that a restart resumes the session.
"""

from __future__ import annotations

import dataclasses
import json
from typing import Any

from mamuk_session.auth.roles import normalize_roles, primary_role

_CORE_FIELDS = frozenset({"id", "_id", "name", "email", "role", "roles"})
_SECRET_FIELDS = frozenset({"token", "accessToken", "refreshToken", "expiresIn", "password"})


@dataclasses.dataclass(frozen=True)
class User:
    """Immutable view of the signed-in user.

    Attributes:
        id:           Identity-service user ID.
        name:         Display name.
        email:        Sign-in email.
        roles:        Every role the user holds.  Authoritative for access checks.
        primary_role: Highest-priority role, for display.
        profile:      Remaining profile fields (bio, height, fitnessGoals, ...).
    """

    id: str
    name: str
    email: str
    roles: frozenset[str]
    primary_role: str
    profile: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def role(self) -> str:
        """Legacy single-role accessor."""
        return self.primary_role

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> User:
        roles = normalize_roles(data)
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            name=str(data.get("name") or ""),
            email=str(data.get("email") or ""),
            roles=frozenset(roles),
            primary_role=primary_role(roles),
            profile={
                k: v for k, v in data.items()
                if k not in _CORE_FIELDS and k not in _SECRET_FIELDS
            },
        )

    def to_dict(self) -> dict[str, Any]:
        others = sorted(r for r in self.roles if r != self.primary_role)
        return {
            **self.profile,
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.primary_role,
            "roles": [self.primary_role, *others],
        }

    def merged(self, changes: dict[str, Any]) -> User:
        """Return a new user with *changes* applied on top of this one."""
        base = self.to_dict()
        if "role" in changes and "roles" not in changes:
            base.pop("roles")
        return User.from_payload({**base, **changes})

    def __str__(self) -> str:
        return f"User(id={self.id}, email={self.email}, roles={sorted(self.roles)})"


@dataclasses.dataclass(frozen=True)
class SessionSnapshot:
    """Persisted ``{isAuthenticated, user, token}`` subset of the session."""

    is_authenticated: bool = False
    user: User | None = None
    token: str | None = None

    @property
    def is_consistent(self) -> bool:
        return self.is_authenticated == (self.user is not None and self.token is not None)

    def to_json(self) -> str:
        return json.dumps({
            "isAuthenticated": self.is_authenticated,
            "user": self.user.to_dict() if self.user is not None else None,
            "token": self.token,
        })

    @classmethod
    def from_json(cls, raw: str) -> SessionSnapshot:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Session snapshot must be a JSON object")
        user_data = data.get("user")
        return cls(
            is_authenticated=bool(data.get("isAuthenticated")),
            user=User.from_payload(user_data) if isinstance(user_data, dict) else None,
            token=data.get("token") or None,
        )
