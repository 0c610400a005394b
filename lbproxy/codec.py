"""Encoding and decoding of configuration data as TOML or JSON."""

from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from typing import Any

import tomli_w


def _plain(value: Any, drop_none: bool) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, Mapping):
        return {
            str(key): _plain(item, drop_none)
            for key, item in value.items()
            if not (drop_none and item is None)
        }
    if isinstance(value, (list, tuple)):
        return [_plain(item, drop_none) for item in value]
    return value


def encode(data: Any, fmt: str) -> str:
    """Encode ``data`` as ``"toml"`` or ``"json"`` text."""
    if fmt == "toml":
        return tomli_w.dumps(_plain(data, drop_none=True))
    if fmt == "json":
        return json.dumps(_plain(data, drop_none=False), indent=4, ensure_ascii=False)
    raise ValueError("Unknown format " + fmt)


def decode(data: str, fmt: str) -> Any:
    """Decode ``"toml"`` or ``"json"`` text."""
    if fmt == "toml":
        return tomllib.loads(data)
    if fmt == "json":
        return json.loads(data)
    raise ValueError("Unknown format " + fmt)