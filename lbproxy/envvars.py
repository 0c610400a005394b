"""Substitution of ``${NAME}`` placeholders with environment variables."""

from __future__ import annotations

import os
import re

_PLACEHOLDER = re.compile(r"\$\{(.*?)\}")


def substitute_env_vars(data: str) -> str:
    """Replace every ``${NAME}`` with the value of NAME, or empty text if unset."""
    return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), data)