"""Bandwidth counters for a server and for each of its backends."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import timedelta

from .core import BandwidthStats, ReadWriteCount, Target

INTERVAL = timedelta(seconds=2)

StatsSink = Callable[[BandwidthStats], object]


def _as_timedelta(interval: timedelta | float) -> timedelta:
    if isinstance(interval, timedelta):
        return interval
    return timedelta(seconds=float(interval))


class BandwidthCounter:
    """Counts total traffic and per-second rates over a fixed interval.

    Each tick computes the rates since the previous tick and passes a copy
    of the stats to ``out``.
    """

    def __init__(
        self,
        interval: timedelta | float = INTERVAL,
        out: StatsSink | None = None,
        target: Target | None = None,
    ) -> None:
        self.interval = _as_timedelta(interval)
        self._divisor = int(self.interval.total_seconds())
        if self._divisor < 1:
            raise ValueError("interval must be at least one second")
        self.stats = BandwidthStats(target=target)
        self.rx_total_last = 0
        self.tx_total_last = 0
        self._new_traffic = False
        self._out = out
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def target(self) -> Target | None:
        return self.stats.target

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add(self, rwc: ReadWriteCount) -> None:
        """Account a traffic delta."""
        with self._lock:
            self._new_traffic = True
            self.stats.rx_total += rwc.count_read
            self.stats.tx_total += rwc.count_write

    def tick(self) -> BandwidthStats:
        """Close a counting cycle, emit and return the current stats."""
        with self._lock:
            if not self._new_traffic:
                self.stats.rx_second = 0
                self.stats.tx_second = 0
            else:
                d_rx = self.stats.rx_total - self.rx_total_last
                d_tx = self.stats.tx_total - self.tx_total_last
                self.stats.rx_second = d_rx // self._divisor
                self.stats.tx_second = d_tx // self._divisor
                self.rx_total_last = self.stats.rx_total
                self.tx_total_last = self.stats.tx_total
                self._new_traffic = False
            snapshot = replace(self.stats)
        if self._out is not None:
            self._out(snapshot)
        return snapshot

    def _run(self) -> None:
        seconds = self.interval.total_seconds()
        while not self._stopped.wait(seconds):
            self.tick()

    def start(self) -> None:
        """Tick periodically in a background thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name="bandwidth-counter")
        self._thread.start()

    def stop(self) -> None:
        """Stop ticking."""
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()


class BackendsBandwidthCounter:
    """Keeps one bandwidth counter per backend target."""

    def __init__(self, out: StatsSink | None = None, interval: timedelta | float = INTERVAL) -> None:
        self._out = out
        self._interval = _as_timedelta(interval)
        self._counters: dict[Target, BandwidthCounter] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def counters(self) -> dict[Target, BandwidthCounter]:
        with self._lock:
            return dict(self._counters)

    def update_counters(self, targets: Iterable[Target]) -> None:
        """Keep counters for ``targets``, creating new and stopping stale ones."""
        targets = list(targets)
        with self._lock:
            result: dict[Target, BandwidthCounter] = {}
            for target in targets:
                counter = self._counters.get(target)
                if counter is None:
                    counter = BandwidthCounter(self._interval, self._out, target)
                    if self._running:
                        counter.start()
                result[target] = counter
            stale = [c for t, c in self._counters.items() if t not in result]
            self._counters = result
        for counter in stale:
            counter.stop()

    def add(self, rwc: ReadWriteCount) -> bool:
        """Route traffic to the target's counter; False if it is not tracked."""
        with self._lock:
            counter = self._counters.get(rwc.target) if rwc.target is not None else None
        if counter is None:
            return False
        counter.add(rwc)
        return True

    def start(self) -> None:
        """Start all current and future counters."""
        with self._lock:
            self._running = True
            counters = list(self._counters.values())
        for counter in counters:
            counter.start()

    def stop(self) -> None:
        """Stop and drop all counters."""
        with self._lock:
            self._running = False
            counters = list(self._counters.values())
            self._counters = {}
        for counter in counters:
            counter.stop()