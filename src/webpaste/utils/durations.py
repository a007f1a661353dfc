"""Humantime-style duration parsing.

Accepts strings like ``"90s"``, ``"15min"``, ``"1h 30m"``, ``"2days"`` or
``"1y 6months"``: one or more ``<integer><unit>`` pairs, optionally
separated by whitespace. Months and years use the same lengths as the
``humantime`` crate (30.44 and 365.25 days).
"""

from __future__ import annotations

import re
from typing import Final

_SECOND: Final[float] = 1
_MINUTE: Final[float] = 60 * _SECOND
_HOUR: Final[float] = 60 * _MINUTE
_DAY: Final[float] = 24 * _HOUR

_UNITS: Final[dict[str, float]] = {
    "nsec": 1e-9, "ns": 1e-9,
    "usec": 1e-6, "us": 1e-6,
    "msec": 1e-3, "ms": 1e-3,
    "seconds": _SECOND, "second": _SECOND, "sec": _SECOND, "s": _SECOND,
    "minutes": _MINUTE, "minute": _MINUTE, "min": _MINUTE, "m": _MINUTE,
    "hours": _HOUR, "hour": _HOUR, "hr": _HOUR, "h": _HOUR,
    "days": _DAY, "day": _DAY, "d": _DAY,
    "weeks": 7 * _DAY, "week": 7 * _DAY, "w": 7 * _DAY,
    "months": 30.44 * _DAY, "month": 30.44 * _DAY, "M": 30.44 * _DAY,
    "years": 365.25 * _DAY, "year": 365.25 * _DAY, "y": 365.25 * _DAY,
}

_PART_RE: Final[re.Pattern[str]] = re.compile(r"\s*([0-9]+)\s*([A-Za-z]+)")

# Largest duration that still fits a signed 64-bit seconds count
MAX_SECONDS: Final[int] = 2**63 - 1


def parse_duration(text: str) -> int:
    """Parse a duration string into whole seconds.

    Raises:
        ValueError: If the string is empty, has an unknown unit, has
            trailing garbage or overflows ``MAX_SECONDS``.
    """
    text = text.strip()
    if not text:
        raise ValueError("empty duration")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _PART_RE.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r} at position {pos}")
        value, unit = match.groups()
        # Unit lookup is case-sensitive only for "M" (months vs minutes)
        factor = _UNITS.get(unit) if unit == "M" else _UNITS.get(unit.lower())
        if factor is None:
            raise ValueError(f"unknown time unit {unit!r} in {text!r}")
        try:
            total += int(value) * factor
        except OverflowError:
            raise ValueError(f"duration overflow in {text!r}") from None
        if total > MAX_SECONDS:
            raise ValueError(f"duration overflow in {text!r}")
        pos = match.end()
        while pos < len(text) and text[pos].isspace():
            pos += 1

    return int(total)
