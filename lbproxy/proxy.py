"""Copying data between sockets while counting traffic."""

from __future__ import annotations

import contextlib
import errno
import logging
import socket
import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from .core import ReadWriteCount

log = logging.getLogger(__name__)

BUFFER_SIZE = 16 * 1024
PROXY_STATS_PUSH_INTERVAL = 1.0

Report = Callable[[ReadWriteCount], object]


def copy_stream(dst: Any, src: Any, report: Report) -> None:
    """Copy from ``src`` to ``dst`` until end of stream, reporting each chunk.

    ``src`` needs ``recv`` and ``dst`` needs ``sendall``. Errors are raised.
    """
    while True:
        data = src.recv(BUFFER_SIZE)
        if not data:
            return
        dst.sendall(data)
        count = len(data)
        report(ReadWriteCount(count_read=count, count_write=count))


class _Aggregator:
    """Sums traffic deltas and reports them at most once per interval."""

    def __init__(self, report: Report, interval: float) -> None:
        self._report = report
        self._interval = interval
        self._buffer = ReadWriteCount()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name="proxy-stats")
        self._thread.start()

    def add(self, rwc: ReadWriteCount) -> None:
        with self._lock:
            self._buffer.count_read += rwc.count_read
            self._buffer.count_write += rwc.count_write

    def _flush(self) -> None:
        with self._lock:
            pending, self._buffer = self._buffer, ReadWriteCount()
        if not pending.is_zero():
            self._report(pending)

    def _run(self) -> None:
        while not self._done.wait(self._interval):
            self._flush()

    def close(self) -> None:
        self._done.set()
        self._thread.join()
        self._flush()


def _close(sock: Any) -> None:
    with contextlib.suppress(OSError, AttributeError):
        sock.shutdown(socket.SHUT_RDWR)
    with contextlib.suppress(OSError):
        sock.close()


def proxy(dst: Any, src: Any, timeout: timedelta | float, report: Report) -> threading.Thread:
    """Proxy ``src`` to ``dst`` in a background thread and return the thread.

    Traffic is reported in aggregated form about once a second and once
    more at the end. With a positive ``timeout`` the connection is dropped
    when ``src`` stays idle that long. Both sockets are closed when done.
    """
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    if seconds > 0:
        src.settimeout(seconds)
    aggregator = _Aggregator(report, PROXY_STATS_PUSH_INTERVAL)

    def run() -> None:
        try:
            copy_stream(dst, src, aggregator.add)
        except OSError as exc:
            if exc.errno != errno.EBADF:
                log.warning("%s", exc)
        finally:
            _close(dst)
            _close(src)
            aggregator.close()

    thread = threading.Thread(target=run, daemon=True, name="proxy")
    thread.start()
    return thread