"""Human-readable duration helpers.

Durations are expressed as an integer followed by a unit, optionally separated
by a single space: ``"500ms"``, ``"1 s"``, ``"5m"``, ``"2h"``, ``"7d"``.
Used by configuration loading so windows and cooldowns can be written as
``RATELIMIT_WINDOW=1m`` instead of raw milliseconds.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Literal

from redlimit.core.errors import DurationParseError

Unit = Literal["ms", "s", "m", "h", "d"]

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

_UNIT_MS: dict[str, int] = {
    "ms": 1,
    "s": MS_PER_SECOND,
    "m": MS_PER_MINUTE,
    "h": MS_PER_HOUR,
    "d": MS_PER_DAY,
}

_DURATION_RE = re.compile(r"(-?[0-9]+)\s?(ms|s|m|h|d)")


def ms(duration: str) -> int:
    """Convert a duration string to milliseconds.

    Args:
        duration: Duration such as ``"1d"`` or ``"500 ms"``.

    Returns:
        Duration in milliseconds (negative values are preserved).

    Raises:
        DurationParseError: If the string does not match ``<int><unit>``.
    """

    match = _DURATION_RE.fullmatch(duration) if isinstance(duration, str) else None
    if not match:
        raise DurationParseError(f"Unable to parse window size: {duration}")

    value = int(match.group(1))
    return value * _UNIT_MS[match.group(2)]


def ms_precise(durations: Iterable[str]) -> int:
    """Sum several durations, e.g. ``["1h", "30m"]`` for 90 minutes."""

    return sum(ms(d) for d in durations)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _best_fit_unit(abs_ms: int) -> Unit:
    if abs_ms < MS_PER_MINUTE:
        return "s"
    if abs_ms < MS_PER_HOUR:
        return "m"
    if abs_ms < MS_PER_DAY:
        return "h"
    return "d"


def ms_to_friendly(value: int, unit: Unit | None = None) -> str:
    """Render milliseconds using one (rounded) unit.

    Args:
        value: Duration in milliseconds.
        unit: Output unit; picked automatically when omitted.

    Returns:
        String such as ``"2m"`` or ``"-1h"``.
    """

    abs_ms = abs(value)
    sign = "-" if value < 0 else ""
    final_unit = unit or _best_fit_unit(abs_ms)

    if final_unit == "ms":
        return f"{sign}{abs_ms}ms"
    if final_unit not in _UNIT_MS:
        raise DurationParseError(f"Unknown duration unit: {final_unit}")
    return f"{sign}{_round_half_up(abs_ms / _UNIT_MS[final_unit])}{final_unit}"


def format_duration(value: int, units: str = "dhms") -> str:
    """Break milliseconds into successive components.

    Each requested unit consumes its share before the next smaller one, so
    ``format_duration(ms("90m"), "hm")`` yields ``"1h 30m"``. Valid unit
    letters are ``d``, ``h``, ``m``, ``s`` and ``MS`` (milliseconds).

    Args:
        value: Duration in milliseconds.
        units: Units to include, largest first in the output.

    Returns:
        Space-separated components, prefixed with ``-`` for negative input.
    """

    abs_ms = abs(value)
    sign = "-" if value < 0 else ""
    remaining = abs_ms
    parts: list[str] = []

    for letter, size in (("d", MS_PER_DAY), ("h", MS_PER_HOUR), ("m", MS_PER_MINUTE), ("s", MS_PER_SECOND)):
        if letter in units:
            amount = remaining // size
            remaining -= amount * size
            parts.append(f"{amount}{letter}")

    if "MS" in units:
        millis = round(remaining, 2)
        if float(millis).is_integer():
            millis = int(millis)
        parts.append(f"{millis}ms")

    if not parts:
        return f"{sign}0{units[-1:]}"
    return sign + " ".join(parts)


def to_ms(value: int | str | None) -> int | None:
    """Normalize a configured duration into milliseconds.

    Integers (and numeric strings) are taken as milliseconds already; other
    strings go through :func:`ms`. ``None`` passes through so callers can
    apply their own default.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise DurationParseError(f"Unable to parse window size: {value}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if re.fullmatch(r"-?[0-9]+", text):
        return int(text)
    return ms(text)
