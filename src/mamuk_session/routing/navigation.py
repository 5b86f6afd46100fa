"""Navigation seam shared by the request interceptor and the route guard.

The session subsystem never drives a browser or a UI toolkit itself.  It asks
a ``Navigator`` where the user currently is and tells it where to go next.
``HistoryNavigator`` is the in-process implementation used by the CLI and by
the tests: it just records locations.
"""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import parse_qs, quote, urlsplit

logger = logging.getLogger(__name__)

RETURN_PARAM = "returnUrl"


class Navigator(Protocol):
    def current_location(self) -> str: ...

    def redirect(self, location: str) -> None: ...


class HistoryNavigator:
    """Records every location it is sent to."""

    def __init__(self, start: str = "/") -> None:
        self._history: list[str] = [start]

    @property
    def history(self) -> list[str]:
        return list(self._history)

    def current_location(self) -> str:
        return self._history[-1]

    def redirect(self, location: str) -> None:
        logger.info("Redirecting to %s", location)
        self._history.append(location)

    def visit(self, location: str) -> None:
        self._history.append(location)


def build_sign_in_url(sign_in_path: str, return_path: str | None) -> str:
    """Return *sign_in_path* with *return_path* encoded as ``returnUrl``.

    The return path is quoted completely (``/``, ``?``, ``&`` and ``=``
    included) so that it survives as a single query value.
    """
    if not return_path:
        return sign_in_path
    separator = "&" if "?" in sign_in_path else "?"
    return f"{sign_in_path}{separator}{RETURN_PARAM}={quote(return_path, safe='')}"


def extract_return_path(location: str) -> str | None:
    """Inverse of ``build_sign_in_url``: decode ``returnUrl`` from *location*."""
    values = parse_qs(urlsplit(location).query).get(RETURN_PARAM)
    return values[0] if values else None
