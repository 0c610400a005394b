"""Gauge metrics for servers and backends, exposed in the Prometheus text format."""

from __future__ import annotations

import logging
import platform
import threading
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from .core import Backend, BandwidthStats, Target

log = logging.getLogger(__name__)

NAMESPACE = "lbproxy"

_SERVER_LABELS = ("server",)
_BACKEND_LABELS = ("server", "host", "port")


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


class GaugeVec:
    """A named gauge with one value per combination of label values."""

    def __init__(self, name: str, help: str, label_names: tuple[str, ...]) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, args: tuple[str, ...]) -> tuple[str, ...]:
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.name} expects {len(self.label_names)} label values, got {len(args)}"
            )
        return tuple(str(arg) for arg in args)

    def set(self, value: float, *args: str) -> None:
        """Set the gauge for the given label values."""
        key = self._key(args)
        with self._lock:
            self._values[key] = float(value)

    def get(self, *args: str) -> float | None:
        """Return the gauge for the given label values, or None if unset."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key)

    def remove(self, *args: str) -> bool:
        """Delete the gauge for the given label values; True if it existed."""
        key = self._key(args)
        with self._lock:
            return self._values.pop(key, None) is not None

    def samples(self) -> dict[tuple[str, ...], float]:
        """Return a copy of all label-values to value pairs."""
        with self._lock:
            return dict(self._values)

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.help}", f"# TYPE {self.name} gauge"]
        for key, value in sorted(self.samples().items()):
            labels = ",".join(
                f'{name}="{_escape(val)}"' for name, val in zip(self.label_names, key)
            )
            lines.append(f"{self.name}{{{labels}}} {_format_value(value)}")
        return "\n".join(lines) + "\n"


def _gauge(subsystem: str, name: str, help: str, labels: tuple[str, ...]) -> GaugeVec:
    full = "_".join(part for part in (NAMESPACE, subsystem, name) if part)
    return GaugeVec(full, help, labels)


class Metrics:
    """Server and backend gauges with an optional HTTP endpoint at /metrics."""

    def __init__(self, version: str = "", revision: str = "", branch: str = "") -> None:
        self.version = version
        self.revision = revision
        self.branch = branch
        self.disabled = False
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

        self.build_info = _gauge(
            "",
            "build_info",
            "A metric with a constant '1' value labeled by version, revision, branch, "
            f"and pythonversion from which {NAMESPACE} was built.",
            ("version", "revision", "branch", "pythonversion"),
        )
        self.server_count = _gauge("server", "count", "Server Count.", _SERVER_LABELS)
        self.server_active_connections = _gauge(
            "server", "active_connections", "Server Actice Connections.", _SERVER_LABELS
        )
        self.server_rx_total = _gauge("server", "rx_total", "Server Rx Total.", _SERVER_LABELS)
        self.server_tx_total = _gauge("server", "tx_total", "Server Tx Total.", _SERVER_LABELS)
        self.server_rx_second = _gauge("server", "rx_second", "Server Rx per Second.", _SERVER_LABELS)
        self.server_tx_second = _gauge("server", "tx_second", "Server Tx per Second.", _SERVER_LABELS)

        self.backend_active_connections = _gauge(
            "backend", "active_connections", "Backend Actice Connections.", _BACKEND_LABELS
        )
        self.backend_refused_connections = _gauge(
            "backend", "refused_connections", "Backend Refused Connections.", _BACKEND_LABELS
        )
        self.backend_total_connections = _gauge(
            "backend", "total_connections", "Backend Total Connections.", _BACKEND_LABELS
        )
        self.backend_rx_bytes = _gauge("backend", "rx_bytes", "Backend Rx Bytes.", _BACKEND_LABELS)
        self.backend_tx_bytes = _gauge("backend", "tx_bytes", "Backend Tx Bytes.", _BACKEND_LABELS)
        self.backend_rx_second = _gauge("backend", "rx_second", "Backend Rx per Second.", _BACKEND_LABELS)
        self.backend_tx_second = _gauge("backend", "tx_second", "Backend Tx per Second.", _BACKEND_LABELS)
        self.backend_live = _gauge("backend", "live", "Backend Alive.", _BACKEND_LABELS)

    @property
    def _server_gauges(self) -> tuple[GaugeVec, ...]:
        return (
            self.server_count,
            self.server_active_connections,
            self.server_rx_total,
            self.server_tx_total,
            self.server_rx_second,
            self.server_tx_second,
        )

    @property
    def _backend_gauges(self) -> tuple[GaugeVec, ...]:
        return (
            self.backend_active_connections,
            self.backend_refused_connections,
            self.backend_total_connections,
            self.backend_rx_bytes,
            self.backend_tx_bytes,
            self.backend_rx_second,
            self.backend_tx_second,
            self.backend_live,
        )

    @property
    def address(self) -> tuple[str, int] | None:
        """The address the HTTP endpoint listens on, if started."""
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self, enabled: bool, bind: str) -> None:
        """Serve /metrics on ``bind`` (``host:port``), or disable reporting."""
        if not enabled:
            log.info("Metrics disabled")
            self.disabled = True
            return

        log.info("Starting up Metrics server %s", bind)
        self.disabled = False
        self.build_info.set(
            1, self.version, self.revision, self.branch, platform.python_version()
        )

        host, _, port = bind.rpartition(":")
        metrics = self

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                if self.path.split("?", 1)[0] != "/metrics":
                    self.send_error(404)
                    return
                body = metrics.render().encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/plain; version=0.0.4; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: object) -> None:
                log.debug(format, *args)

        self._server = ThreadingHTTPServer((host.strip("[]"), int(port)), _Handler)
        self._thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="metrics-http"
        )
        self._thread.start()

    def stop(self) -> None:
        """Shut the HTTP endpoint down."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None

    def render(self) -> str:
        """Return all gauges in the Prometheus text exposition format."""
        gauges = (self.build_info, *self._server_gauges, *self._backend_gauges)
        return "".join(gauge.render() for gauge in gauges)

    def remove_server(self, server: str, backends: Mapping[Target, Backend]) -> None:
        """Drop all gauges of a server and of its backends."""
        if self.disabled:
            return
        for gauge in self._server_gauges:
            gauge.remove(server)
        for backend in backends.values():
            self.remove_backend(server, backend)

    def remove_backend(self, server: str, backend: Backend) -> None:
        """Drop all gauges of one backend."""
        if self.disabled:
            return
        for gauge in self._backend_gauges:
            gauge.remove(server, backend.host, backend.port)

    def report_backend_live_change(self, server: str, target: Target, live: bool) -> None:
        if self.disabled:
            return
        self.backend_live.set(1 if live else 0, server, target.host, target.port)

    def report_connections_change(self, server: str, connections: int) -> None:
        if self.disabled:
            return
        self.server_active_connections.set(connections, server)

    def report_stats_change(self, server: str, stats: BandwidthStats) -> None:
        if self.disabled:
            return
        self.server_rx_total.set(stats.rx_total, server)
        self.server_tx_total.set(stats.tx_total, server)
        self.server_rx_second.set(stats.rx_second, server)
        self.server_tx_second.set(stats.tx_second, server)

    def report_backend_stats_change(
        self, server: str, target: Target, backends: Mapping[Target, Backend]
    ) -> None:
        if self.disabled:
            return
        backend = backends[target]
        labels = (server, target.host, target.port)
        self.server_count.set(len(backends), server)
        self.backend_rx_bytes.set(backend.stats.rx_bytes, *labels)
        self.backend_tx_bytes.set(backend.stats.tx_bytes, *labels)
        self.backend_rx_second.set(backend.stats.rx_second, *labels)
        self.backend_tx_second.set(backend.stats.tx_second, *labels)

    def report_op(self, server: str, target: Target, backends: Mapping[Target, Backend]) -> None:
        if self.disabled:
            return
        backend = backends[target]
        labels = (server, target.host, target.port)
        self.backend_active_connections.set(backend.stats.active_connections, *labels)
        self.backend_refused_connections.set(backend.stats.refused_connections, *labels)
        self.backend_total_connections.set(backend.stats.total_connections, *labels)