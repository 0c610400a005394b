"""Per-server statistics handler and the store that exposes its latest stats."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable
from datetime import timedelta

from .core import Backend, BandwidthStats, ReadWriteCount, ServerStats
from .counters import BackendsBandwidthCounter, BandwidthCounter
from .metrics import Metrics

INTERVAL = timedelta(seconds=2)


class StatsStore:
    """Registry of stats handlers by server name."""

    def __init__(self) -> None:
        self._handlers: dict[str, StatsHandler] = {}
        self._lock = threading.Lock()

    def register(self, handler: StatsHandler) -> None:
        """Make the handler's stats available under its name."""
        with self._lock:
            self._handlers[handler.name] = handler

    def unregister(self, name: str) -> None:
        """Forget the handler registered under ``name``, if any."""
        with self._lock:
            self._handlers.pop(name, None)

    def get_stats(self, name: str) -> ServerStats | None:
        """Return a copy of the latest stats of a server, or None if unknown."""
        with self._lock:
            handler = self._handlers.get(name)
        if handler is None:
            return None
        return handler.latest_stats


default_store = StatsStore()


def get_stats(name: str) -> ServerStats | None:
    """Return the latest stats of a server from the default store."""
    return default_store.get_stats(name)


class StatsHandler:
    """Collects traffic, connection and backend data of one server."""

    def __init__(
        self,
        name: str,
        metrics: Metrics | None = None,
        store: StatsStore | None = None,
        interval: timedelta | float = INTERVAL,
    ) -> None:
        self.name = name
        self.metrics = metrics
        self._store = store if store is not None else default_store
        self._lock = threading.Lock()
        self._latest = ServerStats()
        self.backend_stats_listener: Callable[[BandwidthStats], object] | None = None
        self.server_counter = BandwidthCounter(interval, self.on_server_stats)
        self.backends_counter = BackendsBandwidthCounter(self._on_backend_stats, interval)
        self._store.register(self)

    @property
    def latest_stats(self) -> ServerStats:
        """A copy of the current server stats."""
        with self._lock:
            return copy.deepcopy(self._latest)

    def start(self) -> None:
        """Start the server and backend counters."""
        self.server_counter.start()
        self.backends_counter.start()

    def stop(self) -> None:
        """Stop counting and remove the handler from its store."""
        self.server_counter.stop()
        self.backends_counter.stop()
        self._store.unregister(self.name)

    def on_server_stats(self, stats: BandwidthStats) -> None:
        """Record new server bandwidth stats."""
        with self._lock:
            self._latest.rx_total = stats.rx_total
            self._latest.tx_total = stats.tx_total
            self._latest.rx_second = stats.rx_second
            self._latest.tx_second = stats.tx_second
        if self.metrics is not None:
            self.metrics.report_stats_change(self.name, stats)

    def on_traffic(self, rwc: ReadWriteCount) -> None:
        """Forward a traffic delta to the server and backend counters."""
        self.server_counter.add(rwc)
        self.backends_counter.add(rwc)

    def on_connections(self, count: int) -> None:
        """Record the current number of client connections."""
        with self._lock:
            self._latest.active_connections = count
        if self.metrics is not None:
            self.metrics.report_connections_change(self.name, count)

    def on_backends(self, backends: Iterable[Backend]) -> None:
        """Record the current backends pool."""
        with self._lock:
            self._latest.backends = list(backends)

    def _on_backend_stats(self, stats: BandwidthStats) -> None:
        listener = self.backend_stats_listener
        if listener is not None:
            listener(stats)