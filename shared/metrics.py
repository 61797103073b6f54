"""
Shared metrics configuration for the client cache layer.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Prometheus metrics for one cache layer instance.

    Each collector owns its registry unless one is passed in, so several
    instances (one per simulated tab, one per test) never collide on metric
    names.
    """

    def __init__(self, component_name: str, registry: Optional[CollectorRegistry] = None):
        self.component_name = component_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache layer metrics."""
        self._metrics["cache_checks_total"] = Counter(
            "cache_checks_total",
            "Total cache reads",
            ["cache_type", "result"],
            registry=self.registry
        )

        self._metrics["api_calls_total"] = Counter(
            "api_calls_total",
            "Total network fetches issued",
            registry=self.registry
        )

        self._metrics["operation_duration_seconds"] = Histogram(
            "operation_duration_seconds",
            "Timed operation duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["storage_faults_total"] = Counter(
            "storage_faults_total",
            "Storage faults absorbed at the cache boundary",
            ["fault"],
            registry=self.registry
        )

        self._metrics["evictions_total"] = Counter(
            "evictions_total",
            "Entries evicted under quota pressure",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["broadcast_messages_total"] = Counter(
            "broadcast_messages_total",
            "Cross-tab messages",
            ["direction"],
            registry=self.registry
        )

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a counter sample."""
        value = self.registry.get_sample_value(metric_name, labels or None)
        return value or 0.0

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.inc(amount)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.observe(value)
