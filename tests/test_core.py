from lbproxy.core import (
    Backend,
    BackendStats,
    BandwidthStats,
    ReadWriteCount,
    ServerStats,
    Target,
)


def test_target_address_joins_host_and_port():
    target = Target("127.0.0.1", "8080")
    assert target.address() == "127.0.0.1:8080"
    assert str(target) == "127.0.0.1:8080"


def test_targets_are_usable_as_dict_keys():
    first = Target("h", "1")
    second = Target("h", "1")
    mapping = {first: "value"}
    assert mapping[second] == "value"
    assert Target("h", "2") not in mapping


def test_backend_address_follows_target():
    target = Target("backend", "9000")
    backend = Backend(target=target, weight=3)
    assert backend.address() == target.address()
    assert backend.host == "backend"
    assert backend.port == "9000"


def test_read_write_count_is_zero():
    assert ReadWriteCount().is_zero() is True
    assert ReadWriteCount(count_read=1).is_zero() is False
    assert ReadWriteCount(count_write=7).is_zero() is False


def test_backend_stats_defaults():
    stats = BackendStats()
    assert stats.live is False
    assert stats.active_connections == 0
    assert stats.rx_bytes == 0


def test_bandwidth_stats_defaults():
    stats = BandwidthStats()
    assert (stats.rx_total, stats.tx_total, stats.rx_second, stats.tx_second) == (0, 0, 0, 0)
    assert stats.target is None


def test_server_stats_backends_are_independent():
    first = ServerStats()
    second = ServerStats()
    first.backends.append(Backend())
    assert len(first.backends) == 1
    assert second.backends == []


def test_backends_have_separate_stats():
    a = Backend()
    b = Backend()
    a.stats.live = True
    assert b.stats.live is False