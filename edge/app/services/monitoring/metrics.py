"""In-process metrics: counters, gauges and timing histograms.

Histograms keep only the most recent ``histogram_size`` samples per name
(oldest evicted first), so averages and percentiles describe recent
traffic, not the whole process lifetime.
"""

import math
import re
import threading
from collections import deque
from typing import Any, Dict, Optional

DEFAULT_HISTOGRAM_SIZE = 1000

_PROMETHEUS_NAME = re.compile(r"[^a-zA-Z0-9_]")


def nearest_rank(sorted_values: list, percentile: float) -> float:
    """Nearest-rank percentile of an ascending, non-empty list."""
    index = math.ceil((percentile / 100) * len(sorted_values)) - 1
    index = min(max(index, 0), len(sorted_values) - 1)
    return sorted_values[index]


class MetricsCollector:
    """Collects counters, gauges and timing samples.

    Thread-safe: sync endpoints run in the thread pool and record metrics
    concurrently with the event loop.
    """

    def __init__(self, histogram_size: int = DEFAULT_HISTOGRAM_SIZE):
        self.histogram_size = histogram_size
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, deque] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, value: int = 1) -> None:
        """Add ``value`` to a counter."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def gauge(self, name: str, value: float) -> None:
        """Set a gauge, replacing the previous value."""
        with self._lock:
            self._gauges[name] = value

    def timing(self, name: str, value: float) -> None:
        """Record a timing/histogram sample."""
        with self._lock:
            samples = self._histograms.get(name)
            if samples is None:
                samples = deque(maxlen=self.histogram_size)
                self._histograms[name] = samples
            samples.append(value)

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> Optional[float]:
        with self._lock:
            return self._gauges.get(name)

    def get_samples(self, name: str) -> list:
        """Retained samples for ``name`` in insertion order."""
        with self._lock:
            return list(self._histograms.get(name, ()))

    def get_percentile(self, name: str, percentile: float) -> Optional[float]:
        """Nearest-rank percentile over retained samples, None if there are none."""
        samples = self.get_samples(name)
        if not samples:
            return None
        return nearest_rank(sorted(samples), percentile)

    def get_average(self, name: str) -> Optional[float]:
        samples = self.get_samples(name)
        if not samples:
            return None
        return sum(samples) / len(samples)

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all metrics.

        Returns:
            ``{"counters": {...}, "gauges": {...}, "histograms": {name:
            {"count", "avg", "p50", "p95", "p99"}}}``
        """
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {name: sorted(samples) for name, samples in self._histograms.items()}

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {
                name: {
                    "count": len(values),
                    "avg": sum(values) / len(values) if values else None,
                    "p50": nearest_rank(values, 50) if values else None,
                    "p95": nearest_rank(values, 95) if values else None,
                    "p99": nearest_rank(values, 99) if values else None,
                }
                for name, values in histograms.items()
            },
        }

    def get_prometheus_metrics(self, prefix: str = "edge") -> str:
        """Get metrics in Prometheus text format.

        Histograms are exposed as summaries over the retained samples.
        """
        summary = self.get_summary()
        lines = []

        for name, value in sorted(summary["counters"].items()):
            metric = _metric_name(prefix, name) + "_total"
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")

        for name, value in sorted(summary["gauges"].items()):
            metric = _metric_name(prefix, name)
            lines.append(f"# TYPE {metric} gauge")
            lines.append(f"{metric} {value}")

        for name, stats in sorted(summary["histograms"].items()):
            metric = _metric_name(prefix, name)
            lines.append(f"# TYPE {metric} summary")
            for quantile, key in (("0.5", "p50"), ("0.95", "p95"), ("0.99", "p99")):
                lines.append(f'{metric}{{quantile="{quantile}"}} {stats[key]}')
            lines.append(f"{metric}_count {stats['count']}")

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Clear every counter, gauge and histogram."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


def _metric_name(prefix: str, name: str) -> str:
    return f"{prefix}_{_PROMETHEUS_NAME.sub('_', name)}"
