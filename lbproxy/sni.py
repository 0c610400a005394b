"""Peeking at the TLS ClientHello to learn the requested server name."""

from __future__ import annotations

import socket
from datetime import timedelta
from typing import Any

MAX_HEADER_SIZE = 16385

_RECORD_HANDSHAKE = 0x16
_HANDSHAKE_CLIENT_HELLO = 0x01
_EXTENSION_SERVER_NAME = 0x0000
_NAME_TYPE_HOST = 0x00


class _Reader:
    """Bounds-checked reader over a byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, count: int) -> bytes:
        if count > self.remaining:
            raise ValueError("truncated message")
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def uint(self, size: int) -> int:
        return int.from_bytes(self.take(size), "big")


def _handshake_bytes(data: bytes) -> bytes:
    """Concatenate the payloads of leading handshake records."""
    reader = _Reader(data)
    handshake = bytearray()
    while reader.remaining >= 5:
        content_type = reader.uint(1)
        reader.take(2)
        length = reader.uint(2)
        if content_type != _RECORD_HANDSHAKE:
            break
        handshake += reader.take(length)
        if len(handshake) >= 4 and len(handshake) >= 4 + int.from_bytes(handshake[1:4], "big"):
            break
    return bytes(handshake)


def _parse_server_name(data: bytes) -> str:
    message = _Reader(_handshake_bytes(data))
    if message.uint(1) != _HANDSHAKE_CLIENT_HELLO:
        return ""
    body = _Reader(message.take(message.uint(3)))
    body.take(2 + 32)  # client version and random
    body.take(body.uint(1))  # session id
    body.take(body.uint(2))  # cipher suites
    body.take(body.uint(1))  # compression methods
    if body.remaining == 0:
        return ""
    extensions = _Reader(body.take(body.uint(2)))
    while extensions.remaining:
        ext_type = extensions.uint(2)
        ext_data = _Reader(extensions.take(extensions.uint(2)))
        if ext_type != _EXTENSION_SERVER_NAME:
            continue
        names = _Reader(ext_data.take(ext_data.uint(2)))
        server_name = ""
        while names.remaining:
            name_type = names.uint(1)
            name = names.take(names.uint(2))
            if name_type != _NAME_TYPE_HOST:
                continue
            if server_name:
                raise ValueError("multiple host names")
            server_name = name.decode("ascii")
            if server_name.endswith("."):
                raise ValueError("trailing dot in server name")
        return server_name
    return ""


def extract_hostname(data: bytes) -> str:
    """Return the SNI host name from raw ClientHello bytes, or ``""``."""
    try:
        return _parse_server_name(bytes(data))
    except (ValueError, UnicodeDecodeError):
        return ""


class SniffedConnection:
    """A socket wrapper that replays already-read bytes before reading more."""

    def __init__(self, conn: socket.socket, buffered: bytes) -> None:
        self.conn = conn
        self._buffered = bytearray(buffered)

    def recv(self, bufsize: int) -> bytes:
        """Return buffered bytes first, then read from the socket."""
        if self._buffered:
            chunk = bytes(self._buffered[:bufsize])
            del self._buffered[:bufsize]
            return chunk
        return self.conn.recv(bufsize)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.conn, name)


def sniff(
    conn: socket.socket, read_timeout: timedelta | float
) -> tuple[SniffedConnection, str]:
    """Read the first chunk of ``conn`` and extract the SNI host name.

    Returns a connection that yields the read bytes again, and the host
    name (empty if none was found). Socket errors and timeouts are raised;
    a connection closed before any data raises ConnectionError.
    """
    seconds = (
        read_timeout.total_seconds() if isinstance(read_timeout, timedelta) else float(read_timeout)
    )
    conn.settimeout(seconds)
    data = conn.recv(MAX_HEADER_SIZE)
    if not data:
        raise ConnectionError("connection closed before ClientHello")
    conn.settimeout(None)
    return SniffedConnection(conn, data), extract_hostname(data)