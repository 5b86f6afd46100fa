"""Declarative route table that tells the guard which roles may open a view.

Pattern: Policy-Gated Navigation
---------------------------------
A YAML file (``policies/routes.yaml``) is the single declarative source for
*which views are public and which roles may open the others*.  It is loaded
once at startup and queried on every navigation.

Lookup is by longest matching prefix, so ``/admin/users/7`` inherits the
``/admin`` entry.  A path that matches nothing is treated as a private view
open to any signed-in user.

The same file names each role's home view.  A signed-in user who opens a
public entry marked ``redirect_authenticated`` (the landing page, sign-in)
is sent there instead.

The table is stateless: it receives a path and returns a ``RouteAccess``.
No mutation, no caching of decisions.
"""

from __future__ import annotations

import dataclasses
import pathlib
from typing import Any
from urllib.parse import urlsplit

import yaml

from mamuk_session.auth.session import User
from mamuk_session.errors import RoutePolicyError

FALLBACK_HOME = "/"

# Role -> home view, used when routes.yaml has no ``homes`` section.
DEFAULT_HOMES: dict[str, str] = {
    "admin": "/admin",
    "coach": "/coach/customers",
    "customer": "/workouts",
}


def home_for(user: User | None, homes: dict[str, str] | None = None) -> str:
    """Home view for *user*, chosen by primary role.  ``/`` when anonymous."""
    if user is None:
        return FALLBACK_HOME
    homes = DEFAULT_HOMES if homes is None else homes
    return homes.get(user.primary_role, FALLBACK_HOME)


@dataclasses.dataclass(frozen=True)
class RouteAccess:
    """Access requirements of one route.

    Attributes:
        path:                   Route prefix this entry was declared for.
        public:                 Reachable without signing in.
        allowed_roles:          Roles that may open the view; empty means any signed-in user.
        redirect_authenticated: Send signed-in users to their home view instead.
    """

    path: str
    public: bool = False
    allowed_roles: frozenset[str] = frozenset()
    redirect_authenticated: bool = False


class RoutePolicy:
    """Loads ``routes.yaml`` and resolves route requirements."""

    def __init__(self, policy_path: str | pathlib.Path | None = None) -> None:
        if policy_path is None:
            policy_path = pathlib.Path(__file__).resolve().parents[3] / "policies" / "routes.yaml"
        self._policy_path = pathlib.Path(policy_path)
        self._routes, self._homes = self._load()

    def reload(self) -> None:
        """Re-read the route table from disk."""
        self._routes, self._homes = self._load()

    def home_for(self, user: User | None) -> str:
        return home_for(user, self._homes)

    def resolve(self, location: str) -> RouteAccess:
        """Return the access entry governing *location* (path, optional query)."""
        path = _normalize(urlsplit(location).path)
        candidate = path
        while True:
            entry = self._routes.get(candidate)
            if entry is not None and (entry.path == path or entry.path != "/"):
                return entry
            if candidate == "/":
                break
            candidate = candidate.rsplit("/", 1)[0] or "/"
        return RouteAccess(path=path)

    def list_routes(self) -> list[str]:
        return list(self._routes)

    # -- private helpers -----------------------------------------------------

    def _load(self) -> tuple[dict[str, RouteAccess], dict[str, str]]:
        if not self._policy_path.exists():
            raise RoutePolicyError(f"Route table not found: {self._policy_path}")
        with open(self._policy_path) as fh:
            try:
                data = yaml.safe_load(fh)
            except yaml.YAMLError as exc:
                raise RoutePolicyError(f"Route table is not valid YAML: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("routes"), dict):
            raise RoutePolicyError("Route table must contain a top-level 'routes' mapping")

        routes: dict[str, RouteAccess] = {}
        for raw_path, block in data["routes"].items():
            block = block or {}
            if not isinstance(block, dict):
                raise RoutePolicyError(f"Route '{raw_path}' must map to a mapping")
            path = _normalize(str(raw_path))
            roles: Any = block.get("allowed_roles") or []
            if not isinstance(roles, list):
                raise RoutePolicyError(f"Route '{raw_path}': allowed_roles must be a list")
            routes[path] = RouteAccess(
                path=path,
                public=bool(block.get("public", False)),
                allowed_roles=frozenset(str(r) for r in roles),
                redirect_authenticated=bool(block.get("redirect_authenticated", False)),
            )
        return routes, _load_homes(data.get("homes"))


def _load_homes(raw: Any) -> dict[str, str]:
    if raw is None:
        return dict(DEFAULT_HOMES)
    if not isinstance(raw, dict):
        raise RoutePolicyError("'homes' must map roles to paths")
    return {str(role): _normalize(str(path)) for role, path in raw.items()}


def _normalize(path: str) -> str:
    return "/" + path.strip().strip("/")
