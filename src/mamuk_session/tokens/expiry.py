"""Conversion of server-issued duration codes into absolute expiry instants.

The identity service reports token lifetimes as short codes (``"15m"``,
``"7d"``): decimal digits followed by a one-letter unit.  Anything else is
treated as *unknown* rather than as an error, so the caller can still store
the token and simply skip proactive refresh.
"""

from __future__ import annotations

import datetime
import re
from typing import Any

_DURATION_RE = re.compile(r"^(\d+)([smhd])$", re.ASCII)

_UNIT_SECONDS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration(duration: Any) -> datetime.timedelta | None:
    """Parse a duration code into a ``timedelta``.

    Examples: ``"30s"`` → 30 s, ``"15m"`` → 15 min, ``"7d"`` → 7 days.
    Returns ``None`` for unknown units, non-numeric magnitudes and non-string
    input.
    """
    if not isinstance(duration, str):
        return None
    match = _DURATION_RE.match(duration.strip())
    if match is None:
        return None
    magnitude, unit = match.groups()
    try:
        return datetime.timedelta(seconds=int(magnitude) * _UNIT_SECONDS[unit])
    except OverflowError:
        return None


def compute_expiry(now: datetime.datetime, duration: Any) -> datetime.datetime | None:
    """Return ``now + duration`` or ``None`` if *duration* cannot be parsed."""
    delta = parse_duration(duration)
    if delta is None:
        return None
    try:
        return now + delta
    except OverflowError:
        return None
