"""Running external commands with a time limit."""

from __future__ import annotations

import logging
import subprocess
from datetime import timedelta

log = logging.getLogger(__name__)


def exec_timeout(timeout: timedelta | float, *args: str) -> str:
    """Run a command and return its standard output.

    ``timeout`` is a timedelta or a number of seconds. The process is killed
    when it runs longer, raising subprocess.TimeoutExpired; a non-zero exit
    raises subprocess.CalledProcessError.
    """
    if not args:
        raise ValueError("no command given")
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    try:
        completed = subprocess.run(
            list(args), capture_output=True, timeout=seconds, check=True
        )
    except subprocess.TimeoutExpired:
        log.info("Response from exec %s is timed out. Killing process...", list(args))
        raise
    return completed.stdout.decode("utf-8", errors="replace")