from lbproxy.core import Backend, BandwidthStats, ReadWriteCount, Target
from lbproxy.metrics import Metrics
from lbproxy.statshandler import StatsHandler, StatsStore, get_stats


def test_unknown_server_has_no_stats():
    store = StatsStore()
    assert store.get_stats("missing") is None


def test_handler_registers_and_unregisters():
    store = StatsStore()
    handler = StatsHandler("web", store=store)
    assert store.get_stats("web").rx_total == 0
    handler.stop()
    assert store.get_stats("web") is None


def test_default_store_lookup():
    handler = StatsHandler("default-store-server")
    try:
        handler.on_connections(3)
        assert get_stats("default-store-server").active_connections == 3
    finally:
        handler.stop()
    assert get_stats("default-store-server") is None


def test_server_stats_recorded_and_reported():
    metrics = Metrics()
    store = StatsStore()
    handler = StatsHandler("web", metrics=metrics, store=store)
    handler.on_server_stats(BandwidthStats(rx_total=100, tx_total=200, rx_second=5, tx_second=7))
    stats = store.get_stats("web")
    assert (stats.rx_total, stats.tx_total, stats.rx_second, stats.tx_second) == (100, 200, 5, 7)
    assert metrics.server_rx_total.get("web") == 100
    assert metrics.server_tx_second.get("web") == 7


def test_connections_reported():
    metrics = Metrics()
    handler = StatsHandler("web", metrics=metrics, store=StatsStore())
    handler.on_connections(4)
    assert handler.latest_stats.active_connections == 4
    assert metrics.server_active_connections.get("web") == 4


def test_backends_recorded_as_copy():
    handler = StatsHandler("web", store=StatsStore())
    backend = Backend(target=Target("h", "1"))
    handler.on_backends([backend])
    latest = handler.latest_stats
    assert latest.backends == [backend]
    latest.backends[0].weight = 99
    assert handler.latest_stats.backends[0].weight == backend.weight


def test_traffic_goes_to_server_counter():
    handler = StatsHandler("web", store=StatsStore())
    handler.on_traffic(ReadWriteCount(count_read=10, count_write=20))
    snapshot = handler.server_counter.tick()
    assert snapshot.rx_total == 10
    assert snapshot.tx_total == 20
    assert handler.latest_stats.rx_total == 10


def test_traffic_goes_to_backend_counter_and_listener():
    handler = StatsHandler("web", store=StatsStore())
    target = Target("h", "1")
    seen = []
    handler.backend_stats_listener = seen.append
    handler.backends_counter.update_counters([target])
    handler.on_traffic(ReadWriteCount(count_read=8, target=target))
    handler.backends_counter.counters[target].tick()
    assert len(seen) == 1
    assert seen[0].target == target
    assert seen[0].rx_total == 8