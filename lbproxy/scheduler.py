"""Tracks a server's backends and elects one for each connection."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable
from enum import Enum, auto
from typing import Any, Protocol

from .core import Backend, BandwidthStats, ReadWriteCount, Target
from .metrics import Metrics
from .statshandler import StatsHandler

log = logging.getLogger(__name__)

BACKENDS_PUSH_INTERVAL = 2.0


class OpAction(Enum):
    """Operations applied to a backend's counters."""

    INCREMENT_CONNECTION = auto()
    DECREMENT_CONNECTION = auto()
    INCREMENT_REFUSED = auto()
    INCREMENT_TX = auto()
    INCREMENT_RX = auto()


class Balancer(Protocol):
    def elect(self, context: Any, backends: list[Backend]) -> Backend: ...


class Discovery(Protocol):
    def start(self, on_backends: Callable[[list[Backend]], object]) -> None: ...

    def stop(self) -> None: ...


class Healthcheck(Protocol):
    def start(self, on_result: Callable[[Target, bool], object]) -> None: ...

    def stop(self) -> None: ...

    def update_targets(self, targets: list[Target]) -> None: ...

    def initial_live(self) -> bool: ...


class Scheduler:
    """Keeps backends up to date from discovery and healthchecks and elects them."""

    def __init__(
        self,
        balancer: Balancer,
        stats_handler: StatsHandler,
        discovery: Discovery | None = None,
        healthcheck: Healthcheck | None = None,
        metrics: Metrics | None = None,
        push_interval: float = BACKENDS_PUSH_INTERVAL,
    ) -> None:
        self.balancer = balancer
        self.stats_handler = stats_handler
        self.discovery = discovery
        self.healthcheck = healthcheck
        self.metrics = metrics
        self.push_interval = push_interval
        self._backends: dict[Target, Backend] = {}
        self._lock = threading.RLock()
        self._stopped = threading.Event()
        self._pusher: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self.stats_handler.name

    def start(self) -> None:
        """Start healthchecks, discovery and periodic pushing of backends to stats."""
        log.info("Starting scheduler %s", self.name)
        self._stopped.clear()
        self.stats_handler.backend_stats_listener = self._on_backend_stats
        if self.healthcheck is not None:
            self.healthcheck.start(self.handle_backend_live_change)
        if self.discovery is not None:
            self.discovery.start(self._on_discovered)
        self._pusher = threading.Thread(target=self._push_loop, daemon=True, name="backends-push")
        self._pusher.start()

    def stop(self) -> None:
        """Stop all activity and drop the server's metrics."""
        log.info("Stopping scheduler %s", self.name)
        self._stopped.set()
        pusher = self._pusher
        if pusher is not None and pusher is not threading.current_thread():
            pusher.join()
        self._pusher = None
        if self.discovery is not None:
            self.discovery.stop()
        if self.healthcheck is not None:
            self.healthcheck.stop()
        if self.metrics is not None:
            with self._lock:
                self.metrics.remove_server(self.name, dict(self._backends))

    def _push_loop(self) -> None:
        while not self._stopped.wait(self.push_interval):
            self.stats_handler.on_backends(self.backends())

    def _on_discovered(self, backends: list[Backend]) -> None:
        self.handle_backends_update(backends)
        targets = self.targets()
        if self.healthcheck is not None:
            self.healthcheck.update_targets(targets)
        self.stats_handler.backends_counter.update_counters(targets)

    def _on_backend_stats(self, stats: BandwidthStats) -> None:
        if stats.target is not None:
            self.handle_backend_stats_change(stats.target, stats)

    def targets(self) -> list[Target]:
        """Targets of the current backends."""
        with self._lock:
            return list(self._backends)

    def backends(self) -> list[Backend]:
        """Copies of the current backends."""
        with self._lock:
            return [copy.deepcopy(b) for b in self._backends.values()]

    def handle_backend_stats_change(self, target: Target, stats: BandwidthStats) -> None:
        """Apply new bandwidth stats to a backend."""
        with self._lock:
            backend = self._backends.get(target)
            if backend is None:
                log.warning("No backends for checkResult %s", target)
                return
            backend.stats.rx_bytes = stats.rx_total
            backend.stats.tx_bytes = stats.tx_total
            backend.stats.rx_second = stats.rx_second
            backend.stats.tx_second = stats.tx_second
            if self.metrics is not None:
                self.metrics.report_backend_stats_change(self.name, target, self._backends)

    def handle_backend_live_change(self, target: Target, live: bool) -> None:
        """Apply a healthcheck result to a backend."""
        with self._lock:
            backend = self._backends.get(target)
            if backend is None:
                log.warning("No backends for checkResult %s", target)
                return
            backend.stats.live = live
        if self.metrics is not None:
            self.metrics.report_backend_live_change(self.name, target, live)

    def handle_backends_update(self, backends: Iterable[Backend]) -> None:
        """Merge a newly discovered backend list into the current one.

        Backends no longer discovered are dropped once they have no active
        connections.
        """
        initial_live = self.healthcheck.initial_live() if self.healthcheck is not None else True
        with self._lock:
            for backend in self._backends.values():
                backend.stats.discovered = False

            for backend in backends:
                existing = self._backends.get(backend.target)
                if existing is not None:
                    existing.priority = backend.priority
                    existing.weight = backend.weight
                    existing.sni = backend.sni
                    existing.stats.discovered = True
                    continue
                fresh = copy.deepcopy(backend)
                fresh.stats.discovered = True
                fresh.stats.live = initial_live
                self._backends[fresh.target] = fresh

            removed = [
                b
                for b in self._backends.values()
                if not b.stats.discovered and b.stats.active_connections <= 0
            ]
            for backend in removed:
                del self._backends[backend.target]

        if self.metrics is not None:
            for backend in removed:
                self.metrics.remove_backend(self.name, backend)

    def take_backend(self, context: Any) -> Backend:
        """Elect a live, discovered backend; balancer errors propagate."""
        with self._lock:
            candidates = [
                b for b in self._backends.values() if b.stats.live and b.stats.discovered
            ]
            elected = self.balancer.elect(context, candidates)
            return copy.deepcopy(elected)

    def _handle_op(self, target: Target, action: OpAction) -> None:
        with self._lock:
            backend = self._backends.get(target)
            if backend is None:
                log.warning("Trying op %s on not tracked target %s", action.name, target)
                return
            if action is OpAction.INCREMENT_REFUSED:
                backend.stats.refused_connections += 1
            elif action is OpAction.INCREMENT_CONNECTION:
                backend.stats.active_connections += 1
                backend.stats.total_connections += 1
            elif action is OpAction.DECREMENT_CONNECTION:
                backend.stats.active_connections -= 1
            else:
                log.warning("Don't know how to handle op %s", action.name)
            if self.metrics is not None:
                self.metrics.report_op(self.name, target, self._backends)

    def increment_refused(self, backend: Backend) -> None:
        """Count a refused connection to the backend."""
        self._handle_op(backend.target, OpAction.INCREMENT_REFUSED)

    def increment_connection(self, backend: Backend) -> None:
        """Count a new connection to the backend."""
        self._handle_op(backend.target, OpAction.INCREMENT_CONNECTION)

    def decrement_connection(self, backend: Backend) -> None:
        """Count a closed connection to the backend."""
        self._handle_op(backend.target, OpAction.DECREMENT_CONNECTION)

    def increment_rx(self, backend: Backend, count: int) -> None:
        """Account bytes received from the backend, even if no longer tracked."""
        self.stats_handler.on_traffic(ReadWriteCount(count_read=count, target=backend.target))

    def increment_tx(self, backend: Backend, count: int) -> None:
        """Account bytes sent to the backend, even if no longer tracked."""
        self.stats_handler.on_traffic(ReadWriteCount(count_write=count, target=backend.target))