"""Core value types shared across the proxy: targets, backends and stats."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Target:
    """A backend endpoint identified by host and port."""

    host: str = ""
    port: str = ""

    def address(self) -> str:
        """Return the endpoint as ``host:port``."""
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.address()


@dataclass
class ReadWriteCount:
    """Number of bytes read and written, optionally attributed to a target."""

    count_read: int = 0
    count_write: int = 0
    target: Target | None = None

    def is_zero(self) -> bool:
        """True when no bytes were read or written."""
        return self.count_read == 0 and self.count_write == 0


@dataclass
class BackendStats:
    """Runtime statistics of a single backend."""

    live: bool = False
    discovered: bool = False
    total_connections: int = 0
    active_connections: int = 0
    refused_connections: int = 0
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_second: int = 0
    tx_second: int = 0


@dataclass
class Backend:
    """A backend server that client connections may be proxied to."""

    target: Target = field(default_factory=Target)
    priority: int = 0
    weight: int = 0
    sni: str = ""
    stats: BackendStats = field(default_factory=BackendStats)

    @property
    def host(self) -> str:
        return self.target.host

    @property
    def port(self) -> str:
        return self.target.port

    def address(self) -> str:
        """Return the backend address as ``host:port``."""
        return self.target.address()


@dataclass
class BandwidthStats:
    """Total and per-second byte counters."""

    rx_total: int = 0
    tx_total: int = 0
    rx_second: int = 0
    tx_second: int = 0
    target: Target | None = None


@dataclass
class ServerStats:
    """Latest statistics of a server."""

    active_connections: int = 0
    rx_total: int = 0
    tx_total: int = 0
    rx_second: int = 0
    tx_second: int = 0
    backends: list[Backend] = field(default_factory=list)