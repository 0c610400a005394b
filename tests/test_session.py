import socket
import threading
import time

import pytest

from lbproxy.core import Backend, Target
from lbproxy.session import UDP_PACKET_SIZE, Session, SessionConfig


def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class _Scheduler:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *entry):
        with self._lock:
            self.calls.append(entry)

    def increment_connection(self, backend):
        self._record("connection", backend.target)

    def decrement_connection(self, backend):
        self._record("disconnect", backend.target)

    def increment_rx(self, backend, count):
        self._record("rx", count)

    def increment_tx(self, backend, count):
        self._record("tx", count)

    def of(self, kind):
        with self._lock:
            return [c for c in self.calls if c[0] == kind]


class _Conn:
    def __init__(self, responses=(), short_by=0):
        self.sent = []
        self.closed = False
        self.timeouts = []
        self._responses = list(responses)
        self._short_by = short_by

    def send(self, data):
        self.sent.append(bytes(data))
        return len(data) - self._short_by

    def recv(self, size):
        if self._responses:
            return self._responses.pop(0)
        raise TimeoutError("timed out")

    def settimeout(self, value):
        self.timeouts.append(value)

    def close(self):
        self.closed = True


class _SendTo:
    def __init__(self):
        self.packets = []

    def sendto(self, data, addr):
        self.packets.append((bytes(data), addr))
        return len(data)


BACKEND = Backend(target=Target("127.0.0.1", "9000"))
CLIENT = ("127.0.0.1", 40000)


def _session(conn, cfg=None, scheduler=None):
    scheduler = scheduler or _Scheduler()
    return Session(CLIENT, conn, BACKEND, scheduler, cfg or SessionConfig()), scheduler


def test_creating_session_counts_connection():
    session, scheduler = _session(_Conn())
    try:
        assert scheduler.of("connection") == [("connection", BACKEND.target)]
        assert not session.is_done()
    finally:
        session.close()


def test_write_forwards_to_backend_and_counts_tx():
    conn = _Conn()
    session, scheduler = _session(conn)
    session.write(b"hello")
    session.write(b"world!")
    assert _wait_until(lambda: len(scheduler.of("tx")) == 2)
    assert conn.sent == [b"hello", b"world!"]
    assert scheduler.of("tx") == [("tx", 5), ("tx", 6)]
    session.close()


def test_write_copies_buffer():
    conn = _Conn()
    session, scheduler = _session(conn)
    data = bytearray(b"abc")
    session.write(data)
    data[:] = b"xyz"
    assert _wait_until(lambda: conn.sent)
    assert conn.sent == [b"abc"]
    session.close()


def test_write_truncates_to_packet_size():
    conn = _Conn()
    session, _ = _session(conn)
    session.write(b"a" * (UDP_PACKET_SIZE + 10))
    assert _wait_until(lambda: conn.sent)
    assert len(conn.sent[0]) == UDP_PACKET_SIZE
    session.close()


def test_short_write_is_not_counted():
    conn = _Conn(short_by=1)
    session, scheduler = _session(conn)
    session.write(b"data")
    assert _wait_until(lambda: conn.sent)
    session.close()
    assert _wait_until(session.is_done)
    assert scheduler.of("tx") == []


def test_close_shuts_down_once():
    conn = _Conn()
    session, scheduler = _session(conn)
    session.close()
    session.close()
    assert _wait_until(session.is_done)
    assert conn.closed
    time.sleep(0.05)
    assert scheduler.of("disconnect") == [("disconnect", BACKEND.target)]


def test_write_after_close_raises():
    session, _ = _session(_Conn())
    session.close()
    assert _wait_until(session.is_done)
    with pytest.raises(ConnectionError):
        session.write(b"late")


def test_client_idle_timeout_closes_session():
    conn = _Conn()
    session, scheduler = _session(conn, SessionConfig(client_idle_timeout=0.05))
    assert _wait_until(session.is_done)
    assert conn.closed
    assert scheduler.of("disconnect") == [("disconnect", BACKEND.target)]


def test_listen_responses_relays_to_client():
    conn = _Conn(responses=[b"one", b"three"])
    send_to = _SendTo()
    session, scheduler = _session(conn, SessionConfig(backend_idle_timeout=0.5))
    session.listen_responses(send_to).join(timeout=3)
    assert send_to.packets == [(b"one", CLIENT), (b"three", CLIENT)]
    assert scheduler.of("rx") == [("rx", 3), ("rx", 5)]
    assert conn.timeouts and all(t == 0.5 for t in conn.timeouts)
    assert _wait_until(session.is_done)


def test_max_responses_stops_relaying():
    conn = _Conn(responses=[b"a", b"b", b"c"])
    send_to = _SendTo()
    session, _ = _session(conn, SessionConfig(max_responses=1))
    session.listen_responses(send_to).join(timeout=3)
    assert send_to.packets == [(b"a", CLIENT)]
    assert _wait_until(session.is_done)


def test_real_udp_roundtrip():
    backend_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    proxy_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    conn = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        for sock in (backend_sock, proxy_sock, client_sock):
            sock.bind(("127.0.0.1", 0))
            sock.settimeout(3)
        conn.connect(backend_sock.getsockname())
        scheduler = _Scheduler()
        session = Session(
            client_sock.getsockname(),
            conn,
            BACKEND,
            scheduler,
            SessionConfig(backend_idle_timeout=2),
        )
        session.listen_responses(proxy_sock)
        session.write(b"ping")
        data, origin = backend_sock.recvfrom(1024)
        assert data == b"ping"
        backend_sock.sendto(b"pong", origin)
        reply, reply_from = client_sock.recvfrom(1024)
        assert reply == b"pong"
        assert reply_from == proxy_sock.getsockname()
        session.close()
        assert _wait_until(session.is_done)
    finally:
        for sock in (backend_sock, proxy_sock, client_sock, conn):
            sock.close()