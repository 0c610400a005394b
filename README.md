# lbproxy

The parts of a layer 4 load-balancing proxy for TCP, TLS and UDP traffic:
picking a backend, tracking its connections and bandwidth, enforcing access
rules, exporting metrics and validating server configuration.

## What is in the package

| Module | Purpose |
| --- | --- |
| `lbproxy.core` | `Target`, `Backend`, `BackendStats`, `ReadWriteCount`, `BandwidthStats`, `ServerStats` |
| `lbproxy.timeutil` | `parse_duration` for strings such as `"1m30s"`, and `parse_duration_or_default` |
| `lbproxy.envvars` | `substitute_env_vars` replaces `${NAME}` placeholders with environment values (empty if unset) |
| `lbproxy.execution` | `exec_timeout` runs an external command, returns its output and kills it when the timeout passes |
| `lbproxy.codec` | `encode` / `decode` between Python data (dicts, lists, dataclasses) and `"toml"` or `"json"` text |
| `lbproxy.pidfile` | `write_pid_file` refuses to overwrite the pid file of a process that is still running |
| `lbproxy.parsers` | `parse_backend` / `parse_backend_default` turn `host:port weight=N priority=N sni=NAME` lines into backends |
| `lbproxy.access` | `parse_access_rule`, `AccessRule` and `Access`: ordered allow/deny rules for IPs and CIDR networks |
| `lbproxy.proxyprotocol` | `build_v1_header` and `send_proxy_protocol_v1` for the PROXY protocol, version 1 |
| `lbproxy.tlsconfig` | `TlsOptions`, `BackendTlsOptions`, `map_version`, `map_ciphers`, `make_server_context`, `make_backend_context` |
| `lbproxy.sni` | `extract_hostname` reads the server name from a TLS ClientHello; `sniff` peeks at it and returns a `SniffedConnection` that replays the bytes read |
| `lbproxy.counters` | `BandwidthCounter` and `BackendsBandwidthCounter`: totals and per-second rates |
| `lbproxy.metrics` | `GaugeVec` and `Metrics`, rendered in the Prometheus text format and optionally served over HTTP at `/metrics` |
| `lbproxy.statshandler` | `StatsHandler`, `StatsStore` and `get_stats` for the latest stats of each server |
| `lbproxy.scheduler` | `Scheduler` and `OpAction`: the backend pool, election and per-backend counters |
| `lbproxy.proxy` | `copy_stream` and `proxy` copy data between sockets while reporting traffic |
| `lbproxy.manager` | `unquote`, `prepare_config`, `ConfigError`, `Manager` and the service registry (`register_service`, `create_services`) |
| `lbproxy.session` | `SessionConfig` and `Session` for UDP client sessions |

## Examples

Parse a backend line:

```python
from lbproxy.parsers import parse_backend_default

backend = parse_backend_default("10.0.0.5:8080 weight=3 priority=2")
print(backend.address())   # 10.0.0.5:8080
print(backend.weight)      # 3
```

A line without `weight` or `priority` gets 1 for each. A line that does not
match raises `ValueError`.

Check a client address against access rules. Rules are tried in order; the
first that matches decides, otherwise the default applies:

```python
from lbproxy.access import Access

access = Access.from_rules(["deny 10.0.0.7", "allow 10.0.0.0/8"], "deny")
access.allows("10.1.2.3")   # True
access.allows("10.0.0.7")   # False
access.allows("192.0.2.1")  # False, the default
```

Validate a server section before starting it. Missing values are filled in
with defaults, and anything unsupported raises `ConfigError`:

```python
from lbproxy.manager import prepare_config

server = prepare_config("web", {"bind": "0.0.0.0:80", "discovery": {"kind": "static"}}, None)
server["protocol"]             # "tcp"
server["balance"]              # "weight"
server["healthcheck"]["kind"]  # "none"
```

Serialise configuration:

```python
from lbproxy.codec import decode, encode

text = encode({"servers": {"web": {"bind": "0.0.0.0:80"}}}, "toml")
assert decode(text, "toml") == {"servers": {"web": {"bind": "0.0.0.0:80"}}}
```

Any format other than `"toml"` or `"json"` raises `ValueError`.

## Durations

Durations use the same notation everywhere: an optional sign and a sequence of
numbers, each with a unit from `ns`, `us` (or `µs`), `ms`, `s`, `m` and `h`,
such as `"2s"`, `"1m30s"` or `"1.5h"`. A bare `"0"` is allowed.
`parse_duration` returns a `timedelta` and raises `ValueError` on bad input;
`parse_duration_or_default` returns the default for an empty or malformed
string instead.

## What the package does not do

This is a library of parts, not a ready-to-run load balancer. It has no
command-line program and no listening TCP or UDP proxy server of its own. It
ships no balancing algorithms, service discovery or health checks: a
`Scheduler` is given a balancer object with an `elect(context, backends)`
method, and optionally discovery and health check objects, by the caller.
Likewise `Manager` builds servers through a factory function the caller
supplies, and services are only those registered with `register_service`.
The only network endpoint the package opens by itself is the metrics page
started by `Metrics.start`.