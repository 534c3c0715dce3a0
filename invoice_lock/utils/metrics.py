"""
Basic in-memory metrics counters for observability.

Provides simple counters for the billing worker:
- claim_outcome_total: Counter of claim attempts by outcome
- billing_call_duration_seconds: Histogram of billing API latency
- billing_call_failures_total: Counter of failed billing calls
- batch_completed_total: Counter of finished batch passes
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from invoice_lock.schemas.claims import BatchReport

logger = logging.getLogger("invoice_lock.metrics")


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        """Increment a counter metric."""
        key = self._build_key(name, labels)
        self.counters[key] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        """Record a histogram observation."""
        key = self._build_key(name, labels)
        self.histograms[key].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        key = self._build_key(name, labels)
        return self.counters.get(key, 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Get histogram statistics (count, sum, min, max, avg, p95)."""
        key = self._build_key(name, labels)
        values = self.histograms.get(key, [])

        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_vals = sorted(values)
        n = len(sorted_vals)
        p95_idx = max(0, int(n * 0.95) - 1)
        return {
            "count": n,
            "sum": sum(sorted_vals),
            "min": sorted_vals[0],
            "max": sorted_vals[-1],
            "avg": sum(sorted_vals) / n,
            "p95": sorted_vals[p95_idx],
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms.keys()},
        }

    def reset(self):
        """Reset all metrics."""
        self.counters.clear()
        self.histograms.clear()

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        """Build metric key from name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector instance
metrics = MetricsCollector()


def record_claim_outcome(status: str):
    """
    Record the outcome of one claim attempt.

    Args:
        status: sent, already_handled, contended or failed
    """
    metrics.increment_counter("claim_outcome_total", labels={"status": status})


def record_billing_call(duration_seconds: float, success: bool):
    """Record one call to the billing endpoint."""
    result = "success" if success else "error"
    metrics.observe_histogram("billing_call_duration_seconds", duration_seconds, labels={"result": result})
    if not success:
        metrics.increment_counter("billing_call_failures_total")


def record_batch_completed(report: "BatchReport"):
    """Record a finished batch pass."""
    metrics.increment_counter("batch_completed_total")
    metrics.increment_counter("batch_items_total", value=report.total)
    if report.failed:
        metrics.increment_counter("batch_with_failures_total")


def get_metrics_summary() -> dict:
    """Get a summary of all metrics."""
    return metrics.get_all_metrics()
