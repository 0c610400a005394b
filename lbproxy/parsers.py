"""Parsing of backend description lines such as ``host:port weight=N``."""

from __future__ import annotations

import re

from .core import Backend, BackendStats, Target

DEFAULT_BACKEND_PATTERN = (
    r"^(?P<host>\S+):(?P<port>\d+)(\sweight=(?P<weight>\d+))?"
    r"(\spriority=(?P<priority>\d+))?(\ssni=(?P<sni>[^\s]+))?$"
)


def _int_or_one(value: str | None) -> int:
    try:
        return int(value) if value else 1
    except ValueError:
        return 1


def parse_backend(line: str, pattern: str) -> Backend:
    """Parse a backend line using a pattern with named groups.

    Recognised groups are host, port, weight, priority and sni. Raises
    ValueError when the line does not match.
    """
    line = line.strip()
    match = re.search(pattern, line)
    if match is None:
        raise ValueError("Cant parse " + line)

    groups = {name: value or "" for name, value in match.groupdict().items()}

    return Backend(
        target=Target(host=groups.get("host", ""), port=groups.get("port", "")),
        weight=_int_or_one(groups.get("weight")),
        priority=_int_or_one(groups.get("priority")),
        sni=groups.get("sni", ""),
        stats=BackendStats(live=True),
    )


def parse_backend_default(line: str) -> Backend:
    """Parse a backend line using the default pattern."""
    return parse_backend(line, DEFAULT_BACKEND_PATTERN)