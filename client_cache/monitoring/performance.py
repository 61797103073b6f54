"""
Cache hit rate and fetch latency tracking.

One PerformanceMonitor is constructed per tab and passed to whatever needs it.
Counters are kept in-process for snapshots and mirrored to Prometheus.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

BULK_FETCH_OPERATION = "api:bulk-fetch"


@dataclass
class OperationRecord:
    """A single timed operation."""
    name: str
    duration_ms: float
    at: float
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricsSnapshot:
    """Point-in-time view of the monitor's counters."""
    total_api_calls: int
    bulk_api_calls: int
    average_bulk_fetch_ms: Optional[float]
    last_bulk_fetch_ms: Optional[float]
    cache_checks: int
    cache_hits: int
    cache_hit_rate: Optional[float]
    recent_operations: List[OperationRecord]


class PerformanceMonitor:
    """Counters and timers for cache effectiveness."""

    def __init__(self,
                 metrics: Optional[MetricsCollector] = None,
                 max_operations: int = 100,
                 max_bulk_samples: int = 50):
        self.metrics = metrics if metrics is not None else MetricsCollector("client_cache")
        self.max_operations = max_operations
        self.max_bulk_samples = max_bulk_samples
        self.logger = get_logger("client_cache.monitoring")
        self.reset()

    def reset(self) -> None:
        """Drop every counter and recorded operation."""
        self._operations: Deque[OperationRecord] = deque(maxlen=self.max_operations)
        self._bulk_durations: Deque[float] = deque(maxlen=self.max_bulk_samples)
        self._total_api_calls = 0
        self._bulk_api_calls = 0
        self._last_bulk_ms: Optional[float] = None
        self._cache_checks = 0
        self._cache_hits = 0

    def start_operation(self, name: str, **extra: Any) -> Callable[[], float]:
        """Start a timer; the returned callable stops it and returns milliseconds."""
        start = time.perf_counter()
        at = time.time()

        def stop() -> float:
            duration_ms = (time.perf_counter() - start) * 1000
            self.record(name, duration_ms, extra, at)
            return duration_ms

        return stop

    def record(self,
               name: str,
               duration_ms: float,
               extra: Optional[Dict[str, Any]] = None,
               at: Optional[float] = None) -> None:
        """Record a completed operation."""
        self._operations.append(OperationRecord(
            name=name,
            duration_ms=duration_ms,
            at=at if at is not None else time.time(),
            extra=dict(extra or {}),
        ))
        self.metrics.observe_histogram(
            "operation_duration_seconds", duration_ms / 1000, operation=name
        )

        if name == BULK_FETCH_OPERATION:
            self._bulk_api_calls += 1
            self._last_bulk_ms = duration_ms
            self._bulk_durations.append(duration_ms)

    def increment_api_calls(self, count: int = 1) -> None:
        self._total_api_calls += count
        self.metrics.increment_counter("api_calls_total", count)

    def record_cache_check(self, hit: bool, cache: str = "unknown") -> None:
        self._cache_checks += 1
        if hit:
            self._cache_hits += 1
        self.metrics.increment_counter(
            "cache_checks_total", cache_type=cache, result="hit" if hit else "miss"
        )

    def record_storage_fault(self, fault: str) -> None:
        self.metrics.increment_counter("storage_faults_total", fault=fault)

    def record_evictions(self, namespace: str, count: int) -> None:
        self.metrics.increment_counter("evictions_total", count, namespace=namespace)

    def record_broadcast(self, direction: str) -> None:
        self.metrics.increment_counter("broadcast_messages_total", direction=direction)

    def get_snapshot(self) -> MetricsSnapshot:
        """Summarize counters; recent operations are newest first."""
        average = (
            sum(self._bulk_durations) / len(self._bulk_durations)
            if self._bulk_durations else None
        )
        hit_rate = self._cache_hits / self._cache_checks if self._cache_checks else None
        return MetricsSnapshot(
            total_api_calls=self._total_api_calls,
            bulk_api_calls=self._bulk_api_calls,
            average_bulk_fetch_ms=average,
            last_bulk_fetch_ms=self._last_bulk_ms,
            cache_checks=self._cache_checks,
            cache_hits=self._cache_hits,
            cache_hit_rate=hit_rate,
            recent_operations=list(reversed(self._operations)),
        )
