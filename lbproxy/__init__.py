"""Building blocks for a TCP/UDP load-balancing proxy."""

__version__ = "0.1.0"

__all__ = [
    "access",
    "codec",
    "core",
    "counters",
    "envvars",
    "execution",
    "manager",
    "metrics",
    "parsers",
    "pidfile",
    "proxy",
    "proxyprotocol",
    "scheduler",
    "session",
    "sni",
    "statshandler",
    "timeutil",
    "tlsconfig",
]