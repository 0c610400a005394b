"""Duration parsing in the ``1h30m``/``250ms`` notation used by the configuration."""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation

_NANOS_PER_UNIT = {
    "ns": Decimal(1),
    "us": Decimal(1_000),
    "µs": Decimal(1_000),
    "μs": Decimal(1_000),
    "ms": Decimal(1_000_000),
    "s": Decimal(1_000_000_000),
    "m": Decimal(60_000_000_000),
    "h": Decimal(3_600_000_000_000),
}

_COMPONENT = re.compile(r"([0-9]*(?:\.[0-9]*)?)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"300ms"``, ``"-1.5h"`` or ``"2h45m"``.

    Raises ValueError when the text is not a valid duration.
    """
    rest = text
    sign = 1
    if rest[:1] in ("+", "-") and rest:
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")

    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None or match.group(1) in ("", "."):
            raise ValueError(f"invalid duration {text!r}")
        try:
            value = Decimal(match.group(1))
        except InvalidOperation:
            raise ValueError(f"invalid duration {text!r}") from None
        total += value * _NANOS_PER_UNIT[match.group(2)]
        pos = match.end()

    microseconds = int(total / 1000)
    return timedelta(microseconds=sign * microseconds)


def parse_duration_or_default(text: str, default: timedelta) -> timedelta:
    """Parse a duration, returning ``default`` when empty or invalid."""
    if not text:
        return default
    try:
        return parse_duration(text)
    except ValueError:
        return default