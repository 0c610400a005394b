"""Building SSL contexts for client-facing and backend-facing TLS."""

from __future__ import annotations

import ssl
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

_SUITES = {
    "TLS_RSA_WITH_RC4_128_SHA": "RC4-SHA",
    "TLS_RSA_WITH_3DES_EDE_CBC_SHA": "DES-CBC3-SHA",
    "TLS_RSA_WITH_AES_128_CBC_SHA": "AES128-SHA",
    "TLS_RSA_WITH_AES_256_CBC_SHA": "AES256-SHA",
    "TLS_RSA_WITH_AES_128_CBC_SHA256": "AES128-SHA256",
    "TLS_RSA_WITH_AES_128_GCM_SHA256": "AES128-GCM-SHA256",
    "TLS_RSA_WITH_AES_256_GCM_SHA384": "AES256-GCM-SHA384",
    "TLS_ECDHE_ECDSA_WITH_RC4_128_SHA": "ECDHE-ECDSA-RC4-SHA",
    "TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA": "ECDHE-ECDSA-AES128-SHA",
    "TLS_ECDHE_ECDSA_WITH_AES_256_CBC_SHA": "ECDHE-ECDSA-AES256-SHA",
    "TLS_ECDHE_RSA_WITH_RC4_128_SHA": "ECDHE-RSA-RC4-SHA",
    "TLS_ECDHE_RSA_WITH_3DES_EDE_CBC_SHA": "ECDHE-RSA-DES-CBC3-SHA",
    "TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA": "ECDHE-RSA-AES128-SHA",
    "TLS_ECDHE_RSA_WITH_AES_256_CBC_SHA": "ECDHE-RSA-AES256-SHA",
    "TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA256": "ECDHE-ECDSA-AES128-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA256": "ECDHE-RSA-AES128-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256": "ECDHE-RSA-AES128-GCM-SHA256",
    "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256": "ECDHE-ECDSA-AES128-GCM-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384": "ECDHE-RSA-AES256-GCM-SHA384",
    "TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384": "ECDHE-ECDSA-AES256-GCM-SHA384",
    "TLS_ECDHE_RSA_WITH_CHACHA20_POLY1305_SHA256": "ECDHE-RSA-CHACHA20-POLY1305",
    "TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305_SHA256": "ECDHE-ECDSA-CHACHA20-POLY1305",
    # TLS 1.3 suites are always enabled and cannot be restricted.
    "TLS_AES_128_GCM_SHA256": "TLS_AES_128_GCM_SHA256",
    "TLS_AES_256_GCM_SHA384": "TLS_AES_256_GCM_SHA384",
    "TLS_CHACHA20_POLY1305_SHA256": "TLS_CHACHA20_POLY1305_SHA256",
}

_VERSIONS = {
    "tls1": ssl.TLSVersion.TLSv1,
    "tls1.1": ssl.TLSVersion.TLSv1_1,
    "tls1.2": ssl.TLSVersion.TLSv1_2,
    "tls1.3": ssl.TLSVersion.TLSv1_3,
}


@dataclass
class TlsOptions:
    """TLS settings for incoming client connections."""

    cert_path: str = ""
    key_path: str = ""
    ciphers: list[str] | None = None
    min_version: str = ""
    max_version: str = ""
    session_tickets: bool = False
    acme_hosts: list[str] = field(default_factory=list)


@dataclass
class BackendTlsOptions:
    """TLS settings for connections made to backends."""

    ignore_verify: bool = False
    root_ca_cert_path: str | None = None
    cert_path: str | None = None
    key_path: str | None = None
    ciphers: list[str] | None = None
    min_version: str = ""
    max_version: str = ""
    session_tickets: bool = False


def map_version(version: str) -> ssl.TLSVersion | None:
    """Map ``"tls1"``..``"tls1.3"`` to a TLS version, or None if unknown."""
    return _VERSIONS.get(version)


def map_ciphers(ciphers: Iterable[str] | None) -> list[str] | None:
    """Map cipher suite names to OpenSSL names, skipping unknown ones.

    Returns None when no ciphers were given.
    """
    if not ciphers:
        return None
    return [_SUITES[name] for name in ciphers if name in _SUITES]


def _apply_common(
    ctx: ssl.SSLContext,
    ciphers: list[str] | None,
    min_version: str,
    max_version: str,
    session_tickets: bool,
) -> None:
    configurable = [name for name in map_ciphers(ciphers) or [] if not name.startswith("TLS_")]
    if configurable:
        ctx.set_ciphers(":".join(configurable))
    minimum = map_version(min_version)
    if minimum is not None:
        ctx.minimum_version = minimum
    maximum = map_version(max_version)
    if maximum is not None:
        ctx.maximum_version = maximum
    if not session_tickets:
        ctx.options |= ssl.OP_NO_TICKET


def make_server_context(
    options: TlsOptions | None,
    sni_callback: Callable[..., object] | None = None,
) -> ssl.SSLContext | None:
    """Build a server context; with ``sni_callback`` no certificate is loaded."""
    if options is None:
        return None
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    _apply_common(ctx, options.ciphers, options.min_version, options.max_version, options.session_tickets)
    if sni_callback is not None:
        ctx.sni_callback = sni_callback
        return ctx
    ctx.load_cert_chain(options.cert_path, options.key_path)
    return ctx


def make_backend_context(options: BackendTlsOptions | None) -> ssl.SSLContext | None:
    """Build a client context for connecting to backends."""
    if options is None:
        return None
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if options.ignore_verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    _apply_common(ctx, options.ciphers, options.min_version, options.max_version, options.session_tickets)

    if options.cert_path is not None and options.key_path is not None:
        ctx.load_cert_chain(options.cert_path, options.key_path)

    if options.root_ca_cert_path is not None:
        ctx.load_verify_locations(cafile=options.root_ca_cert_path)
    else:
        ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)
    return ctx