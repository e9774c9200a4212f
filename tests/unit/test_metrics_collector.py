"""Tests for MetricsCollector."""

import pytest

from chain_indexer.services.monitoring.metrics_collector import MetricsCollector


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector(clock):
    return MetricsCollector(clock=clock)


class TestMetricsCollector:
    """Test counters and derived rates."""

    def test_empty_collector(self, collector):
        assert collector.rpc_success_rate == 100.0
        assert collector.average_chunk_time == 0.0
        assert collector.blocks_per_second == 0.0
        assert collector.get_user_metrics("nobody") is None

    def test_throughput(self, collector, clock):
        collector.record_chunk_processed("u1", 2.0, blocks=1_000)
        collector.record_chunk_processed("u1", 4.0, blocks=1_000)
        clock.now = 10.0

        assert collector.blocks_per_second == 200.0
        assert collector.average_chunk_time == 3.0
        assert collector.get_metrics()["chunks_processed"] == 2

    def test_rpc_success_rate_and_latency(self, collector):
        for success in (True, True, True, False):
            collector.record_rpc_request(success, 100.0)

        assert collector.rpc_success_rate == 75.0
        assert collector.get_metrics()["rpc"]["average_latency_ms"] == 100.0

    def test_per_user_counters(self, collector):
        collector.record_chunk_processed("u1", 1.0, blocks=50)
        collector.record_error("u1")
        collector.record_error()

        user = collector.get_user_metrics("u1")
        assert user["chunks_processed"] == 1
        assert user["blocks_processed"] == 50
        assert user["errors"] == 1
        assert user["last_activity"] is not None
        assert collector.errors == 2

    def test_latency_samples_bounded(self, clock):
        collector = MetricsCollector(sample_limit=3, clock=clock)
        for latency in (1000.0, 10.0, 20.0, 30.0):
            collector.record_rpc_request(True, latency)

        assert collector.average_rpc_latency_ms == 20.0

    def test_reset(self, collector):
        collector.record_chunk_processed("u1", 1.0, blocks=10)

        collector.reset()

        assert collector.get_metrics()["blocks_processed"] == 0
        assert collector.get_metrics()["users"] == 0
