"""User roles and their normalization.

User payloads arrive in two shapes: a legacy single ``role`` string, or a
``roles`` list.  Both are collapsed once, at install time, into a frozenset
plus a derived primary role, so no downstream consumer has to care which
shape the server sent.
"""

from __future__ import annotations

import enum
from typing import Any, Iterable


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    COACH = "coach"
    ADMIN = "admin"


DEFAULT_ROLE = Role.CUSTOMER.value

# Display priority for the primary role.  The first role the user holds wins
# (order = most-privileged first).
_ROLE_PRIORITY: list[str] = [
    Role.ADMIN.value,
    Role.COACH.value,
    Role.CUSTOMER.value,
]


def normalize_roles(payload: dict[str, Any]) -> tuple[str, ...]:
    """Return the user's roles in payload order, without duplicates.

    ``roles`` wins when it is a non-empty list; otherwise the legacy ``role``
    becomes a one-element set; otherwise the user is a customer.
    """
    raw = payload.get("roles")
    if isinstance(raw, (list, tuple, set, frozenset)):
        roles = [_role_name(r) for r in raw if _role_name(r)]
        if roles:
            return tuple(dict.fromkeys(roles))
    legacy = _role_name(payload.get("role"))
    if legacy:
        return (legacy,)
    return (DEFAULT_ROLE,)


def primary_role(roles: Iterable[str]) -> str:
    """Highest-priority role: admin, then coach, then customer.

    A role outside that list is passed through unchanged (the first one, if
    the user only holds unknown roles).
    """
    ordered = list(roles)
    for role in _ROLE_PRIORITY:
        if role in ordered:
            return role
    return ordered[0] if ordered else DEFAULT_ROLE


def has_any_role(user_roles: Iterable[str], required: Iterable[str | Role]) -> bool:
    held = set(user_roles)
    return any(_role_name(r) in held for r in required)


def _role_name(value: Any) -> str:
    if isinstance(value, Role):
        return value.value
    if isinstance(value, str):
        return value.strip()
    return ""
