import socket

import pytest

from lbproxy.proxyprotocol import build_v1_header, send_proxy_protocol_v1


def test_ipv4_header():
    header = build_v1_header(("192.168.0.1", 56324), ("192.168.0.11", 443))
    assert header == b"PROXY TCP4 192.168.0.1 192.168.0.11 56324 443\r\n"


def test_ipv6_header():
    header = build_v1_header(("2001:db8::1", 1234, 0, 0), ("2001:db8::2", 80, 0, 0))
    assert header == b"PROXY TCP6 2001:db8::1 2001:db8::2 1234 80\r\n"


def test_mapped_ipv4_is_reported_as_tcp4():
    header = build_v1_header(("::ffff:10.0.0.1", 1000), ("10.0.0.2", 2000))
    assert header == build_v1_header(("10.0.0.1", 1000), ("10.0.0.2", 2000))


def test_invalid_source_raises():
    with pytest.raises(ValueError, match="Could not parse IP"):
        build_v1_header(("not-an-ip", 1), ("10.0.0.1", 2))


def test_invalid_destination_raises():
    with pytest.raises(ValueError, match="Could not parse IP"):
        build_v1_header(("10.0.0.1", 1), ("bad", 2))


def test_send_over_real_connection():
    listener = socket.create_server(("127.0.0.1", 0))
    outgoing = socket.create_connection(listener.getsockname())
    accepted, _ = listener.accept()
    backend_side, reader = socket.socketpair()
    try:
        send_proxy_protocol_v1(accepted, backend_side)
        data = reader.recv(256)
        assert data == build_v1_header(accepted.getpeername(), accepted.getsockname())
        assert data.startswith(b"PROXY TCP4 127.0.0.1 127.0.0.1 ")
        assert data.endswith(b"\r\n")
    finally:
        for sock in (listener, outgoing, accepted, backend_side, reader):
            sock.close()