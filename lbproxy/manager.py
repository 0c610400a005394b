"""Server lifecycle management and validation of server configuration."""

from __future__ import annotations

import copy
import logging
import os
import re
import string
import threading
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any, Protocol

from .codec import encode
from .timeutil import parse_duration

log = logging.getLogger(__name__)

Config = dict[str, Any]


class ConfigError(ValueError):
    """Raised when a configuration is invalid or conflicts with the current state."""


class ManagedServer(Protocol):
    """A running proxy server as seen by the manager."""

    cfg: Config

    def start(self) -> None: ...

    def stop(self) -> None: ...


class Service(Protocol):
    """A global service that is told about every server."""

    def enable(self, server: ManagedServer) -> None: ...

    def disable(self, server: ManagedServer) -> None: ...


ServerFactory = Callable[[str, Config], ManagedServer]
ServiceFactory = Callable[[Config], "Service | None"]


# ----- string literal unquoting -----

_SIMPLE_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "n": 0x0A,
    "r": 0x0D,
    "t": 0x09,
    "v": 0x0B,
    "\\": 0x5C,
    '"': 0x22,
}
_HEX_WIDTH = {"x": 2, "u": 4, "U": 8}
_OCTAL = "01234567"


def _invalid() -> ValueError:
    return ValueError("invalid syntax")


def unquote(text: str) -> str:
    """Interpret backslash escapes as in a double-quoted string literal.

    Supports ``\\a \\b \\f \\n \\r \\t \\v \\\\ \\"``, ``\\xHH``, ``\\ooo``,
    ``\\uHHHH`` and ``\\UHHHHHHHH``. Raises ValueError on invalid syntax,
    an unescaped double quote or a newline.
    """
    out = bytearray()
    pos = 0
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch in ('"', "\n"):
            raise _invalid()
        if ch != "\\":
            out += ch.encode("utf-8", "surrogateescape")
            pos += 1
            continue
        if pos + 1 >= length:
            raise _invalid()
        esc = text[pos + 1]
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
            pos += 2
        elif esc in _HEX_WIDTH:
            width = _HEX_WIDTH[esc]
            digits = text[pos + 2 : pos + 2 + width]
            if len(digits) != width or any(c not in string.hexdigits for c in digits):
                raise _invalid()
            value = int(digits, 16)
            if esc == "x":
                out.append(value)
            else:
                if value > 0x10FFFF or 0xD800 <= value < 0xE000:
                    raise _invalid()
                out += chr(value).encode("utf-8")
            pos += 2 + width
        elif esc in _OCTAL:
            digits = text[pos + 1 : pos + 4]
            if len(digits) != 3 or any(c not in _OCTAL for c in digits):
                raise _invalid()
            value = int(digits, 8)
            if value > 0xFF:
                raise _invalid()
            out.append(value)
            pos += 4
        else:
            raise _invalid()
    return out.decode("utf-8", "surrogateescape")


# ----- defaults and globals -----


def init_defaults(defaults: Mapping[str, Any] | None) -> Config:
    """Return connection defaults with every missing value filled in."""
    result: Config = dict(defaults or {})
    if result.get("max_connections") is None:
        result["max_connections"] = 0
    for key in ("client_idle_timeout", "backend_idle_timeout", "backend_connection_timeout"):
        if result.get(key) is None:
            result[key] = "0"
    return result


def init_config_globals(cfg: Mapping[str, Any]) -> Config:
    """Return a copy of the whole configuration with global sections defaulted."""
    result: Config = copy.deepcopy(dict(cfg))
    acme = result.get("acme")
    if acme is not None:
        if not acme.get("challenge"):
            acme["challenge"] = "http"
        if not acme.get("http_bind"):
            acme["http_bind"] = "0.0.0.0:80"
        if not acme.get("cache_dir"):
            acme["cache_dir"] = "/tmp"
    return result


# ----- server configuration validation -----


def _duration(text: str) -> timedelta:
    return parse_duration(text)


def _check_duration(text: str, message: str) -> None:
    try:
        _duration(text)
    except ValueError:
        raise ConfigError(message) from None


def _validate_healthcheck(hc: Config) -> None:
    kind = hc.get("kind", "")
    if kind not in ("ping", "probe", "exec", "none"):
        raise ConfigError("Not supported healthcheck type " + str(kind))

    if not hc.get("interval"):
        hc["interval"] = "0"
    if not hc.get("timeout"):
        hc["timeout"] = "0"
    if hc.get("fails", 0) <= 0:
        hc["fails"] = 1
    if hc.get("passes", 0) <= 0:
        hc["passes"] = 1

    if kind != "none":
        try:
            interval = _duration(hc["interval"])
        except ValueError as exc:
            raise ConfigError("Could not parse healtcheck interval: " + str(exc)) from None
        if interval <= timedelta(0):
            raise ConfigError("Healthcheck interval should be greater than 0s")

    initial = hc.get("initial_status")
    if initial is not None and initial not in ("healthy", "unhealthy"):
        raise ConfigError("Unsupported healthcheck initial_status")

    if kind == "probe":
        _validate_probe(hc)


def _validate_probe(hc: Config) -> None:
    if hc.get("probe_protocol", "") not in ("tcp", "udp", "tls"):
        raise ConfigError("Unsupported probe_protocol")

    if not hc.get("probe_send") or not hc.get("probe_recv"):
        raise ConfigError(
            "probe healthcheck should have both probe_send and probe_recv specified"
        )

    if not hc.get("probe_strategy"):
        hc["probe_strategy"] = "starts_with"

    try:
        hc["probe_send"] = unquote(hc["probe_send"])
    except ValueError as exc:
        raise ConfigError("probe_send has invalid syntax " + str(exc)) from None

    strategy = hc["probe_strategy"]
    recv_len = hc.get("probe_recv_len", 0)
    if strategy == "starts_with":
        if recv_len > 0:
            raise ConfigError("probe_recv_len is redundant for 'starts_with' strategy")
        try:
            hc["probe_recv"] = unquote(hc["probe_recv"])
        except ValueError as exc:
            raise ConfigError("probe_recv has invalid syntax " + str(exc)) from None
    elif strategy == "regexp":
        if recv_len == 0:
            raise ConfigError("probe_recv_len required")
        try:
            re.compile(hc["probe_recv"])
        except re.error as exc:
            raise ConfigError("probe_recv has invalid syntax " + str(exc)) from None
    else:
        raise ConfigError("Unsupported probe_strategy " + str(strategy))


def _validate_sni(sni: Config) -> None:
    if not sni.get("read_timeout"):
        sni["read_timeout"] = "2s"
    if not sni.get("unexpected_hostname_strategy"):
        sni["unexpected_hostname_strategy"] = "default"
    strategy = sni["unexpected_hostname_strategy"]
    if strategy not in ("default", "reject", "any"):
        raise ConfigError("Not supported sni unexprected hostname strategy " + str(strategy))
    if not sni.get("hostname_matching_strategy"):
        sni["hostname_matching_strategy"] = "exact"
    matching = sni["hostname_matching_strategy"]
    if matching not in ("exact", "regexp"):
        raise ConfigError("Not supported sni matching " + str(matching))
    _check_duration(sni["read_timeout"], "timeout parsing error")


def _validate_protocol(server: Config) -> None:
    protocol = server.get("protocol", "")
    if protocol == "":
        server["protocol"] = "tcp"
    elif protocol == "tls":
        if server.get("tls") is None:
            raise ConfigError("Need tls section for tls protocol")
    elif protocol == "tcp":
        pass
    elif protocol == "udp":
        if server.get("backends_tls") is not None:
            raise ConfigError("backends_tls should not be enabled for udp protocol")
        if server.get("udp") is None:
            server["udp"] = {"max_requests": 0, "max_responses": 0, "transparent": False}
        udp = server["udp"]
        if (
            not udp.get("max_requests", 0)
            and not udp.get("max_responses", 0)
            and server.get("client_idle_timeout") is None
            and server.get("backend_idle_timeout") is None
        ):
            raise ConfigError(
                "udp protocol requires to specify at least one of "
                "(client|backend)_idle_timeout, udp.max_requests, udp.max_responses"
            )
    else:
        raise ConfigError("Not supported protocol " + str(protocol))


def _validate_discovery(discovery: Config) -> None:
    failpolicy = discovery.get("failpolicy", "")
    if failpolicy == "":
        discovery["failpolicy"] = "keeplast"
    elif failpolicy not in ("keeplast", "setempty"):
        raise ConfigError("Not supported failpolicy " + str(failpolicy))

    if not discovery.get("interval"):
        discovery["interval"] = "0"
    if not discovery.get("timeout"):
        discovery["timeout"] = "0"

    kind = discovery.get("kind", "")
    if kind == "srv":
        dns_protocol = discovery.get("srv_dns_protocol", "")
        if dns_protocol == "":
            discovery["srv_dns_protocol"] = "udp"
        elif dns_protocol not in ("udp", "tcp"):
            raise ConfigError("Not supported srv_dns_protocol " + str(dns_protocol))

    if kind == "lxd":
        address = discovery.get("lxd_server_address", "")
        if not address:
            raise ConfigError("lxd_server_address is required" + address)
        if not (address.startswith("https:") or address.startswith("unix:")):
            raise ConfigError(
                "lxd_server_address should start with either unix:// or https:// but got "
                + address
            )
        if not discovery.get("lxd_server_remote_name"):
            discovery["lxd_server_remote_name"] = "local"
        if not discovery.get("lxd_config_directory"):
            discovery["lxd_config_directory"] = os.environ.get("HOME", "") + "/.config/lxc"
        if not discovery.get("lxd_container_interface"):
            discovery["lxd_container_interface"] = "eth0"
        address_type = discovery.get("lxd_container_address_type", "")
        if address_type == "":
            discovery["lxd_container_address_type"] = "IPv4"
        elif address_type not in ("IPv4", "IPv6"):
            raise ConfigError("Invalid lxd_container_address_type. Must be IPv4 or IPv6")


def prepare_config(
    name: str, server: Mapping[str, Any], defaults: Mapping[str, Any] | None
) -> Config:
    """Validate a server configuration and return a copy with defaults merged in.

    Raises ConfigError describing the first problem found.
    """
    server = copy.deepcopy(dict(server))
    defaults = init_defaults(defaults)

    if not server.get("bind"):
        raise ConfigError("No bind specified for server " + name)
    if server.get("discovery") is None:
        raise ConfigError("No .discovery specified for server " + name)

    if server.get("healthcheck") is None:
        server["healthcheck"] = {"kind": "none", "interval": "0", "timeout": "0"}
    healthcheck = server["healthcheck"]
    _validate_healthcheck(healthcheck)

    proxy_protocol = server.get("proxy_protocol")
    if proxy_protocol is not None:
        protocol = server.get("protocol", "")
        if protocol != "tcp":
            raise ConfigError(
                "proxy_protocol may be used only with 'tcp' protocol, not with " + protocol
            )
        version = proxy_protocol.get("version", "")
        if not version:
            raise ConfigError("version field for proxy_protocol is not specified")
        if version != "1":
            raise ConfigError("Unsupported proxy_protocol version " + str(version))

    if server.get("sni") is not None:
        _validate_sni(server["sni"])

    _check_duration(healthcheck["timeout"], "timeout parsing error")
    _check_duration(healthcheck["interval"], "interval parsing error")

    backends_tls = server.get("backends_tls")
    if backends_tls is not None and (
        (backends_tls.get("key_path") is None) != (backends_tls.get("cert_path") is None)
    ):
        raise ConfigError("backend_tls.cert_path and .key_path should be specified together")

    tls = server.get("tls")
    if tls is not None and not tls.get("acme_hosts") and (
        not tls.get("key_path") or not tls.get("cert_path")
    ):
        raise ConfigError("tls requires specify either acme hosts or both key and cert paths")

    _validate_protocol(server)

    if healthcheck["kind"] == "ping" and server["protocol"] == "udp":
        raise ConfigError("Cant use ping healthcheck with udp server")

    balance = server.get("balance", "")
    if balance == "":
        server["balance"] = "weight"
    elif balance not in ("weight", "leastconn", "roundrobin", "leastbandwidth", "iphash1", "iphash"):
        raise ConfigError("Not supported balance type " + str(balance))

    _validate_discovery(server["discovery"])

    for key in (
        "max_connections",
        "client_idle_timeout",
        "backend_idle_timeout",
        "backend_connection_timeout",
    ):
        if server.get(key) is None:
            server[key] = defaults[key]

    return server


# ----- services -----

_registry: dict[str, ServiceFactory] = {}


def register_service(name: str, factory: ServiceFactory) -> None:
    """Register a service factory; it may return None to stay disabled."""
    _registry[name] = factory


def create_services(cfg: Mapping[str, Any]) -> list[Service]:
    """Create every registered service that is enabled by ``cfg``."""
    services: list[Service] = []
    for name, factory in list(_registry.items()):
        service = factory(dict(cfg))
        if service is None:
            continue
        log.info("Creating %s", name)
        services.append(service)
    return services


# ----- manager -----


class Manager:
    """Creates, tracks and removes the running servers."""

    def __init__(
        self,
        cfg: Mapping[str, Any],
        server_factory: ServerFactory,
        services: list[Service] | None = None,
    ) -> None:
        log.info("Initializing...")
        self._servers: dict[str, ManagedServer] = {}
        self._lock = threading.RLock()
        self._server_factory = server_factory
        self._original = init_config_globals(cfg)
        self.defaults = init_defaults(self._original.get("defaults"))
        self.services = create_services(self._original) if services is None else list(services)
        for name, server_cfg in (self._original.get("servers") or {}).items():
            self.create(name, server_cfg)
        log.info("Initialized")

    def create(self, name: str, cfg: Mapping[str, Any]) -> None:
        """Validate, build, enable services for and start a new server."""
        with self._lock:
            if name in self._servers:
                raise ConfigError("Server with this name already exists: " + name)
            prepared = prepare_config(name, cfg, self.defaults)
            server = self._server_factory(name, prepared)
            for service in self.services:
                service.enable(server)
            server.start()
            self._servers[name] = server

    def delete(self, name: str) -> None:
        """Stop a server, dropping its connections, and forget it."""
        with self._lock:
            server = self._servers.get(name)
            if server is None:
                raise KeyError("Server not found")
            server.stop()
            del self._servers[name]
            for service in self.services:
                service.disable(server)

    def all(self) -> dict[str, Config]:
        """Configurations of all servers by name."""
        with self._lock:
            return {name: server.cfg for name, server in self._servers.items()}

    def get(self, name: str) -> Config | None:
        """Configuration of one server, or None if it does not exist."""
        with self._lock:
            server = self._servers.get(name)
        return None if server is None else server.cfg

    def stats(self, name: str) -> ManagedServer | None:
        """The running server object, or None if it does not exist."""
        with self._lock:
            return self._servers.get(name)

    def dump_config(self, fmt: str) -> str:
        """Encode the configuration with the current servers as ``toml`` or ``json``."""
        dumped = copy.deepcopy(self._original)
        dumped["servers"] = self.all()
        return encode(dumped, fmt)