"""Parsing and formatting of durations in the "1h30m", "500ms" notation."""

from __future__ import annotations

import re

_NANOS_PER_SECOND = 1_000_000_000
_MAX_NANOS = 2**63 - 1

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": _NANOS_PER_SECOND,
    "m": 60 * _NANOS_PER_SECOND,
    "h": 3600 * _NANOS_PER_SECOND,
}

_NUMBER = re.compile(r"([0-9]*)(?:\.([0-9]*))?")
_UNIT = re.compile(r"[^0-9.]*")


def _parse_nanos(text: str) -> int:
    quoted = f'"{text}"'
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ValueError(f"time: invalid duration {quoted}")

    total = 0
    while rest:
        number = _NUMBER.match(rest)
        whole, fraction = number.group(1), number.group(2) or ""
        has_dot = number.group(2) is not None
        if not whole and not fraction:
            raise ValueError(f"time: invalid duration {quoted}")
        if has_dot and not whole and not fraction:
            raise ValueError(f"time: invalid duration {quoted}")
        rest = rest[number.end():]

        unit = _UNIT.match(rest).group(0)
        if not unit:
            raise ValueError(f"time: missing unit in duration {quoted}")
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration {quoted}')
        rest = rest[len(unit):]

        scale = _UNITS[unit]
        value = int(whole or "0") * scale
        if fraction:
            value += int(fraction) * scale // 10 ** len(fraction)
        total += value
        if total > _MAX_NANOS:
            raise ValueError(f"time: invalid duration {quoted}")

    return -total if negative else total


def parse_duration(text: str) -> float:
    """Parse a duration such as "1m20s" or "-1.5h" and return seconds."""
    return _parse_nanos(text) / _NANOS_PER_SECOND


def _to_nanos(seconds: float) -> int:
    return round(seconds * _NANOS_PER_SECOND)


def _with_fraction(value: int, precision: int) -> str:
    whole, fraction = divmod(value, 10**precision)
    digits = f"{fraction:0{precision}d}".rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def format_go_duration(seconds: float) -> str:
    """Format seconds in the compact notation, e.g. "1h0m0s" or "500ms"."""
    nanos = _to_nanos(seconds)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)

    if nanos < _NANOS_PER_SECOND:
        if nanos < 1_000:
            return f"{sign}{nanos}ns"
        if nanos < 1_000_000:
            return f"{sign}{_with_fraction(nanos, 3)}\u00b5s"
        return f"{sign}{_with_fraction(nanos, 6)}ms"

    minute = 60 * _NANOS_PER_SECOND
    result = f"{_with_fraction(nanos % minute, 9)}s"
    total_minutes = nanos // minute
    if total_minutes:
        hours, minutes = divmod(total_minutes, 60)
        result = f"{minutes}m{result}"
        if hours:
            result = f"{hours}h{result}"
    return sign + result


_HUMAN_UNITS = (
    ("year", "years", 365 * 24 * 3600 * _NANOS_PER_SECOND, None),
    ("week", "weeks", 7 * 24 * 3600 * _NANOS_PER_SECOND, 52),
    ("day", "days", 24 * 3600 * _NANOS_PER_SECOND, 7),
    ("hour", "hours", 3600 * _NANOS_PER_SECOND, 24),
    ("minute", "minutes", 60 * _NANOS_PER_SECOND, 60),
    ("second", "seconds", _NANOS_PER_SECOND, 60),
    ("millisecond", "milliseconds", 1_000_000, 1000),
    ("microsecond", "microseconds", 1_000, 1000),
)


def humanize_duration(seconds: float) -> str:
    """Spell out a duration in words, e.g. "1 minute 20 seconds"."""
    nanos = _to_nanos(seconds)
    if nanos == 0:
        return "0 seconds"
    prefix = "-" if nanos < 0 else ""
    nanos = abs(nanos)

    parts = []
    for singular, plural, size, modulus in _HUMAN_UNITS:
        amount = nanos // size
        if modulus is not None:
            amount %= modulus
        if amount == 1:
            parts.append(f"1 {singular}")
        elif amount > 1:
            parts.append(f"{amount} {plural}")
    return prefix + " ".join(parts)