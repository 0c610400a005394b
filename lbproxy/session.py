"""UDP sessions that pair one client address with one backend connection."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

from .core import Backend

log = logging.getLogger(__name__)

UDP_PACKET_SIZE = 65507
MAX_PACKETS_QUEUE = 10000


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class _Scheduler(Protocol):
    def increment_connection(self, backend: Backend) -> None: ...

    def decrement_connection(self, backend: Backend) -> None: ...

    def increment_rx(self, backend: Backend, count: int) -> None: ...

    def increment_tx(self, backend: Backend, count: int) -> None: ...


@dataclass
class SessionConfig:
    """Limits and timeouts of a UDP session; zero means unlimited."""

    max_requests: int = 0
    max_responses: int = 0
    client_idle_timeout: timedelta | float = field(default_factory=timedelta)
    backend_idle_timeout: timedelta | float = field(default_factory=timedelta)
    transparent: bool = False


class Session:
    """Forwards client datagrams to a backend and backend replies to the client.

    Datagrams written to the session are queued and sent by a worker thread.
    The session closes itself when the client stays idle longer than
    ``client_idle_timeout``.
    """

    def __init__(
        self,
        client_addr: Any,
        conn: Any,
        backend: Backend,
        scheduler: _Scheduler,
        cfg: SessionConfig,
    ) -> None:
        self.client_addr = client_addr
        self.backend = backend
        self.cfg = cfg
        self._conn = conn
        self._scheduler = scheduler
        self._queue: deque[bytes] = deque()
        self._cond = threading.Condition()
        self._stop_requested = False
        self._stopped = threading.Event()
        self._sent = 0
        self._recv = 0

        scheduler.increment_connection(backend)
        self._worker = threading.Thread(target=self._run, daemon=True, name="udp-session")
        self._worker.start()

    def __repr__(self) -> str:
        return f"Session({self.client_addr!r} -> {self.backend.address()})"

    def _next_action(self, deadline: float | None) -> bytes | None:
        """Wait for a packet; None means stop was requested or the client idled out."""
        with self._cond:
            while not self._stop_requested and not self._queue:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stop_requested = True
                    break
                self._cond.wait(remaining)
            if self._stop_requested:
                return None
            return self._queue.popleft()

    def _run(self) -> None:
        idle = _seconds(self.cfg.client_idle_timeout)
        deadline = time.monotonic() + idle if idle > 0 else None
        while True:
            packet = self._next_action(deadline)
            if packet is None:
                self._shutdown()
                return
            if idle > 0:
                deadline = time.monotonic() + idle
            self._send(packet)

    def _send(self, packet: bytes) -> None:
        try:
            sent = self._conn.send(packet)
        except OSError as exc:
            log.error("Could not write data to udp connection: %s", exc)
            return
        if sent != len(packet):
            log.error(
                "Short write error: should write %d bytes, but %d written", len(packet), sent
            )
            return
        self._scheduler.increment_tx(self.backend, sent)
        self._sent += 1
        if self.cfg.max_requests > 0 and self._sent > self.cfg.max_requests:
            log.error("Restricted to send more UDP packets")

    def _shutdown(self) -> None:
        self._stopped.set()
        with contextlib.suppress(OSError):
            self._conn.close()
        self._scheduler.decrement_connection(self.backend)
        with self._cond:
            self._queue.clear()

    def write(self, data: bytes) -> None:
        """Queue a datagram for the backend; dropped silently if the queue is full.

        Raises ConnectionError when the session is already closed.
        """
        if self._stopped.is_set():
            raise ConnectionError("Closed session")
        packet = bytes(data[:UDP_PACKET_SIZE])
        with self._cond:
            if len(self._queue) < MAX_PACKETS_QUEUE:
                self._queue.append(packet)
                self._cond.notify()

    def listen_responses(self, send_to: Any) -> threading.Thread:
        """Relay backend replies to the client through ``send_to`` in a thread.

        The session is closed when the backend idles out, an error occurs or
        ``max_responses`` replies were relayed.
        """
        thread = threading.Thread(
            target=self._relay_responses, args=(send_to,), daemon=True, name="udp-responses"
        )
        thread.start()
        return thread

    def _relay_responses(self, send_to: Any) -> None:
        idle = _seconds(self.cfg.backend_idle_timeout)
        try:
            while True:
                if idle > 0:
                    self._conn.settimeout(idle)
                try:
                    data = self._conn.recv(UDP_PACKET_SIZE)
                except TimeoutError:
                    return
                except OSError as exc:
                    if not self._stopped.is_set():
                        log.error("Failed to read from backend: %s", exc)
                    return

                count = len(data)
                self._scheduler.increment_rx(self.backend, count)

                try:
                    written = send_to.sendto(data, self.client_addr)
                except OSError as exc:
                    log.error("Could not send backend response to client: %s", exc)
                    return
                if written != count:
                    return

                self._recv += 1
                if self.cfg.max_responses > 0 and self._recv >= self.cfg.max_responses:
                    return
        finally:
            self.close()

    def is_done(self) -> bool:
        """True once the session has shut down."""
        return self._stopped.is_set()

    def close(self) -> None:
        """Request the session to shut down; repeated calls are harmless."""
        with self._cond:
            self._stop_requested = True
            self._cond.notify_all()