"""
GhostScore Metrics.

Prometheus counters and histograms for indexer polls, skipped transactions,
applied ratings and tamper events, mirrored in a simple in-memory store so
tests and embedders can read them without a scrape endpoint.
"""

import time
import logging
import threading
from typing import Optional, Dict, Any
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest

logger = logging.getLogger(__name__)


class GhostScoreMetrics:
    """
    Metrics collector for GhostScore operations.

    Example:
        >>> metrics = GhostScoreMetrics()
        >>> metrics.record_poll(success=True, events=12)
        >>> with metrics.poll_timer():
        ...     events = await indexer.poll_transactions()
        >>> metrics.get_stats()["polls_success"]
        1
    """

    def __init__(
        self,
        namespace: str = "ghostscore",
        enable_prometheus: bool = True,
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize metrics collector.

        Args:
            namespace: Metric name prefix.
            enable_prometheus: Whether to register Prometheus metrics.
            registry: Optional Prometheus registry (a private one if None).
        """
        self._namespace = namespace
        self._lock = threading.Lock()

        self._counters: Dict[str, float] = {}
        self._histograms: Dict[str, list] = {}

        self._registry: Optional[CollectorRegistry] = None
        self._prom_metrics: Dict[str, Any] = {}
        if enable_prometheus:
            self._setup_prometheus_metrics(registry)

    def _setup_prometheus_metrics(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self._registry = reg

        self._prom_metrics["polls_total"] = Counter(
            f"{self._namespace}_polls_total",
            "Total number of ledger polls",
            ["status"],
            registry=reg,
        )

        self._prom_metrics["payment_events_total"] = Counter(
            f"{self._namespace}_payment_events_total",
            "Total payment events produced by the indexer",
            registry=reg,
        )

        self._prom_metrics["transactions_skipped_total"] = Counter(
            f"{self._namespace}_transactions_skipped_total",
            "Transactions skipped after a fetch or parse failure",
            registry=reg,
        )

        self._prom_metrics["ratings_applied_total"] = Counter(
            f"{self._namespace}_ratings_applied_total",
            "Total ratings applied to reputation scores",
            registry=reg,
        )

        self._prom_metrics["tamper_events_total"] = Counter(
            f"{self._namespace}_tamper_events_total",
            "Commitment or authentication failures on decrypt",
            registry=reg,
        )

        self._prom_metrics["poll_duration"] = Histogram(
            f"{self._namespace}_poll_duration_seconds",
            "Ledger poll latency in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=reg,
        )

    def _inc(self, key: str, amount: float = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def record_poll(self, success: bool, events: int = 0) -> None:
        """Record a completed (or failed) poll."""
        self._inc(f"polls_{'success' if success else 'failure'}")
        if events:
            self._inc("payment_events", events)

        if "polls_total" in self._prom_metrics:
            self._prom_metrics["polls_total"].labels(
                status="success" if success else "failure"
            ).inc()
            if events:
                self._prom_metrics["payment_events_total"].inc(events)

    def record_skipped_transaction(self) -> None:
        self._inc("transactions_skipped")
        if "transactions_skipped_total" in self._prom_metrics:
            self._prom_metrics["transactions_skipped_total"].inc()

    def record_rating_applied(self) -> None:
        self._inc("ratings_applied")
        if "ratings_applied_total" in self._prom_metrics:
            self._prom_metrics["ratings_applied_total"].inc()

    def record_tamper_event(self) -> None:
        """Record a tamper-evidence failure (security event)."""
        self._inc("tamper_events")
        if "tamper_events_total" in self._prom_metrics:
            self._prom_metrics["tamper_events_total"].inc()

    def record_poll_duration(self, duration_seconds: float) -> None:
        with self._lock:
            self._histograms.setdefault("poll_durations", []).append(duration_seconds)

        if "poll_duration" in self._prom_metrics:
            self._prom_metrics["poll_duration"].observe(duration_seconds)

    @contextmanager
    def poll_timer(self):
        """Context manager for timing polls."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_poll_duration(time.perf_counter() - start)

    def get_stats(self) -> Dict[str, Any]:
        """Get current metrics as a dictionary."""
        with self._lock:
            stats = dict(self._counters)

            for name, values in self._histograms.items():
                if values:
                    stats[f"{name}_avg"] = sum(values) / len(values)
                    stats[f"{name}_count"] = len(values)
                    stats[f"{name}_max"] = max(values)

            return stats

    def get_prometheus_metrics(self) -> Optional[bytes]:
        """Get metrics in Prometheus text format."""
        if self._registry is None:
            return None
        return generate_latest(self._registry)

    def reset(self) -> None:
        """Clear the in-memory counters (Prometheus counters are monotonic)."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


# Global metrics instance
_global_metrics: Optional[GhostScoreMetrics] = None


def get_metrics() -> GhostScoreMetrics:
    """Get or create the global metrics instance."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = GhostScoreMetrics()
    return _global_metrics
