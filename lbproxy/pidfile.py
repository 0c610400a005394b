"""Writing a pid file while refusing to clobber a running instance."""

from __future__ import annotations

import os
import re
from pathlib import Path

_PID = re.compile(r"[+-]?[0-9]+")


def _is_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


def write_pid_file(path: str | os.PathLike[str]) -> None:
    """Write the current pid to ``path``.

    Raises ValueError if an existing file does not hold a pid, and
    RuntimeError if the process it names is still running.
    """
    path = Path(path)
    if path.exists():
        content = path.read_text()
        if not _PID.fullmatch(content):
            raise ValueError(f"Could not parse pid file {path} contents '{content}'")
        pid = int(content)
        if _is_running(pid):
            raise RuntimeError(f"process with pid {pid} is still running")

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o664)
    with os.fdopen(fd, "w") as handle:
        handle.write(str(os.getpid()))