import socket
import ssl

import pytest

from lbproxy.sni import MAX_HEADER_SIZE, SniffedConnection, extract_hostname, sniff


def _client_hello(server_hostname):
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    incoming = ssl.MemoryBIO()
    outgoing = ssl.MemoryBIO()
    obj = ctx.wrap_bio(incoming, outgoing, server_side=False, server_hostname=server_hostname)
    with pytest.raises(ssl.SSLWantReadError):
        obj.do_handshake()
    return outgoing.read()


def test_extract_hostname_from_real_client_hello():
    assert extract_hostname(_client_hello("example.com")) == "example.com"


def test_extract_hostname_without_sni():
    assert extract_hostname(_client_hello(None)) == ""


def test_extract_hostname_from_garbage():
    assert extract_hostname(b"GET / HTTP/1.1\r\n\r\n") == ""


def test_extract_hostname_from_truncated_hello():
    hello = _client_hello("example.com")
    assert extract_hostname(hello[:20]) == ""


def test_extract_hostname_from_empty():
    assert extract_hostname(b"") == ""


def test_sniff_returns_hostname_and_replays_data():
    hello = _client_hello("example.com")
    left, right = socket.socketpair()
    try:
        left.sendall(hello)
        conn, hostname = sniff(right, 2.0)
        assert hostname == "example.com"
        received = b""
        while len(received) < len(hello):
            received += conn.recv(len(hello))
        assert received == hello
        left.sendall(b"more")
        assert conn.recv(16) == b"more"
    finally:
        left.close()
        right.close()


def test_sniff_resets_timeout():
    left, right = socket.socketpair()
    try:
        left.sendall(b"plain")
        conn, hostname = sniff(right, 1.0)
        assert hostname == ""
        assert right.gettimeout() is None
        assert conn.recv(3) == b"pla"
        assert conn.recv(10) == b"in"
    finally:
        left.close()
        right.close()


def test_sniff_on_closed_connection_raises():
    left, right = socket.socketpair()
    try:
        left.close()
        with pytest.raises(ConnectionError):
            sniff(right, 1.0)
    finally:
        right.close()


def test_sniff_times_out():
    left, right = socket.socketpair()
    try:
        with pytest.raises(TimeoutError):
            sniff(right, 0.05)
    finally:
        left.close()
        right.close()


def test_sniffed_connection_delegates_attributes():
    left, right = socket.socketpair()
    try:
        wrapped = SniffedConnection(right, b"")
        assert wrapped.fileno() == right.fileno()
        assert MAX_HEADER_SIZE == 16385
    finally:
        left.close()
        right.close()