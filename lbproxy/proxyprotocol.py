"""PROXY protocol version 1 header generation."""

from __future__ import annotations

import contextlib
import ipaddress
import socket
from typing import Any

_Address = tuple[Any, ...]


def _parse(addr: _Address) -> tuple[ipaddress.IPv4Address | ipaddress.IPv6Address, int]:
    host, port = addr[0], addr[1]
    try:
        ip = ipaddress.ip_address(str(host).split("%", 1)[0])
    except ValueError:
        raise ValueError("Could not parse IP") from None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip, int(port)


def _as_v6(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> ipaddress.IPv6Address:
    if isinstance(ip, ipaddress.IPv4Address):
        return ipaddress.IPv6Address("::ffff:" + str(ip))
    return ip


def build_v1_header(source: _Address, destination: _Address) -> bytes:
    """Build a v1 header from (host, port) source and destination addresses."""
    src_ip, src_port = _parse(source)
    dst_ip, dst_port = _parse(destination)
    if isinstance(src_ip, ipaddress.IPv4Address):
        protocol = "TCP4"
    else:
        protocol = "TCP6"
        dst_ip = _as_v6(dst_ip)
    return f"PROXY {protocol} {src_ip} {dst_ip} {src_port} {dst_port}\r\n".encode("ascii")


def send_proxy_protocol_v1(client: socket.socket, backend: socket.socket) -> None:
    """Send a v1 header describing the client connection to the backend.

    Address errors are raised; a failed write to the backend is ignored.
    """
    header = build_v1_header(client.getpeername(), client.getsockname())
    with contextlib.suppress(OSError):
        backend.sendall(header)