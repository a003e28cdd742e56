"""Tests for the in-process metrics collector."""

import pytest

from edge.app.services.monitoring import MetricsCollector, nearest_rank


class TestNearestRank:
    """Tests for nearest-rank percentiles."""

    def test_percentiles_of_one_to_hundred(self):
        values = list(range(1, 101))
        assert nearest_rank(values, 50) == 50
        assert nearest_rank(values, 95) == 95
        assert nearest_rank(values, 99) == 99
        assert nearest_rank(values, 100) == 100

    def test_small_sample(self):
        values = [10, 20, 30, 40]
        assert nearest_rank(values, 50) == 20
        assert nearest_rank(values, 99) == 40
        assert nearest_rank(values, 0) == 10

    def test_single_sample(self):
        assert nearest_rank([7.5], 50) == 7.5
        assert nearest_rank([7.5], 99) == 7.5


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    @pytest.fixture
    def collector(self):
        return MetricsCollector(histogram_size=1000)

    def test_increment(self, collector):
        collector.increment("requests.total")
        collector.increment("requests.total")
        collector.increment("requests.total", 3)

        assert collector.get_counter("requests.total") == 5
        assert collector.get_counter("missing") == 0

    def test_gauge_replaces_value(self, collector):
        collector.gauge("connections", 4)
        collector.gauge("connections", 2)
        assert collector.get_gauge("connections") == 2
        assert collector.get_gauge("missing") is None

    def test_histogram_keeps_most_recent_samples(self):
        collector = MetricsCollector(histogram_size=3)
        for value in [1, 2, 3, 4, 5]:
            collector.timing("response.time", value)

        assert collector.get_samples("response.time") == [3, 4, 5]
        assert collector.get_average("response.time") == 4

    def test_percentiles_use_retained_window(self):
        collector = MetricsCollector(histogram_size=100)
        for value in range(1000, 0, -1):
            collector.timing("response.time", value)

        # Only the last 100 samples (100..1) remain
        assert collector.get_percentile("response.time", 50) == 50
        assert collector.get_percentile("response.time", 99) == 99

    def test_percentile_of_missing_histogram(self, collector):
        assert collector.get_percentile("missing", 50) is None
        assert collector.get_average("missing") is None

    def test_summary(self, collector):
        collector.increment("requests.total")
        collector.gauge("queue.depth", 3)
        for value in range(1, 101):
            collector.timing("response.time", float(value))

        summary = collector.get_summary()

        assert summary["counters"] == {"requests.total": 1}
        assert summary["gauges"] == {"queue.depth": 3}
        assert summary["histograms"]["response.time"] == {
            "count": 100,
            "avg": 50.5,
            "p50": 50.0,
            "p95": 95.0,
            "p99": 99.0,
        }

    def test_summary_is_a_snapshot(self, collector):
        collector.increment("hits")
        summary = collector.get_summary()
        collector.increment("hits")

        assert summary["counters"]["hits"] == 1

    def test_prometheus_format(self, collector):
        collector.increment("hits", 2)
        collector.gauge("queue.depth", 3)
        collector.timing("response.time", 12.0)

        output = collector.get_prometheus_metrics()

        assert "# TYPE edge_hits_total counter" in output
        assert "edge_hits_total 2" in output
        assert "# TYPE edge_queue_depth gauge" in output
        assert "edge_queue_depth 3" in output
        assert "# TYPE edge_response_time summary" in output
        assert 'edge_response_time{quantile="0.5"} 12.0' in output
        assert "edge_response_time_count 1" in output

    def test_reset(self, collector):
        collector.increment("hits")
        collector.gauge("queue.depth", 3)
        collector.timing("response.time", 1.0)

        collector.reset()

        assert collector.get_summary() == {"counters": {}, "gauges": {}, "histograms": {}}


class TestHistogramEviction:
    """Retention over a bounded number of samples."""

    def test_capacity_plus_k_keeps_most_recent(self):
        collector = MetricsCollector(histogram_size=10)
        samples = [float(v) for v in [5, 80, 3, 41, 17, 99, 62, 8, 23, 54, 71, 12, 36]]
        for value in samples:
            collector.timing("response.time", value)

        retained = samples[-10:]
        assert collector.get_samples("response.time") == retained
        assert collector.get_percentile("response.time", 100) == max(retained)

    def test_percentile_nearest_rank(self):
        collector = MetricsCollector()
        for value in [40, 10, 30, 20]:
            collector.timing("latency", value)

        assert collector.get_percentile("latency", 50) == 20
