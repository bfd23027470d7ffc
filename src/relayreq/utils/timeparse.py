"""Natural time and duration parsing for command-line flags.

``--since``/``--until`` accept:

* a unix timestamp (``1700000000``);
* ``now``;
* an absolute date or datetime in any form ``dateutil`` understands
  (``2024-01-31``, ``2024-01-31T12:00:00Z``, ``Jan 31 2024``), read as UTC
  when it carries no offset;
* a relative time ``<n><unit> ago`` with unit ``s``, ``m``, ``h``, ``d`` or
  ``w`` (``2h ago``, ``3 days ago``).

``--paginate-interval`` accepts plain seconds (``1.5``) or a Go-style
duration made of number-unit pairs (``500ms``, ``2s``, ``1m30s``).
"""

from __future__ import annotations

import re
import time
from datetime import UTC
from typing import Final

from dateutil import parser as date_parser


_UNIT_SECONDS: Final[dict[str, int]] = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "h": 3600,
    "hour": 3600,
    "d": 86_400,
    "day": 86_400,
    "w": 604_800,
    "week": 604_800,
}

_RELATIVE_RE: Final = re.compile(r"^(\d+)\s*([a-z]+?)s?\s+ago$")
_DURATION_PART_RE: Final = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS: Final[dict[str, float]] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_timestamp(value: str, *, now: int | None = None) -> int:
    """Parse a natural time expression into a unix timestamp.

    Args:
        value: The expression to parse.
        now: Reference time for ``now`` and relative expressions
            (current time when omitted).

    Raises:
        ValueError: If the expression is not recognized or is negative.
    """
    text = value.strip().lower()
    reference = int(time.time()) if now is None else now

    if text.isdigit():
        return int(text)
    if text == "now":
        return reference

    match = _RELATIVE_RE.match(text)
    if match:
        amount, unit = match.groups()
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"unknown time unit in {value!r}")
        return max(reference - int(amount) * _UNIT_SECONDS[unit], 0)

    try:
        parsed = date_parser.parse(value.strip())
    except (ValueError, OverflowError):
        raise ValueError(f"unrecognized time {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    timestamp = int(parsed.timestamp())
    if timestamp < 0:
        raise ValueError(f"time {value!r} is before the unix epoch")
    return timestamp


def parse_duration(value: str) -> float:
    """Parse a duration into seconds.

    Raises:
        ValueError: If the duration is malformed or negative.
    """
    text = value.strip().lower()
    try:
        seconds = float(text)
    except ValueError:
        parts = _DURATION_PART_RE.findall(text)
        if not parts or "".join(n + u for n, u in parts) != text:
            raise ValueError(f"invalid duration {value!r}") from None
        seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    if seconds < 0:
        raise ValueError(f"duration {value!r} is negative")
    return seconds
