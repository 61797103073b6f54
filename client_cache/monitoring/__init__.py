"""
Cache layer monitoring.
"""

from .performance import BULK_FETCH_OPERATION, MetricsSnapshot, OperationRecord, PerformanceMonitor

__all__ = ["PerformanceMonitor", "MetricsSnapshot", "OperationRecord", "BULK_FETCH_OPERATION"]
