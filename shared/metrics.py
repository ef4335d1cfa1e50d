"""
Shared metrics configuration for the Fiscal Tracker client.
"""

from typing import Any, Dict, Optional
import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class MetricsCollector:
    """Metrics collector for the client's request cache.

    Each collector owns its registry unless one is passed in, so several
    caches in one process do not clash on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Total request cache lookups",
            ["resource", "result"],
            registry=self.registry
        )

        self._metrics["cache_fetches_total"] = Counter(
            "cache_fetches_total",
            "Total fetches started by the request cache",
            ["resource", "outcome"],
            registry=self.registry
        )

        self._metrics["cache_fetch_duration_seconds"] = Histogram(
            "cache_fetch_duration_seconds",
            "Duration of fetches started by the request cache",
            ["resource"],
            registry=self.registry
        )

        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Number of entries held by the request cache",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_cache_lookup(self, resource: str, result: str):
        """Record a lookup; result is hit, miss, coalesced or forced."""
        self._metrics["cache_lookups_total"].labels(resource=resource, result=result).inc()

    def record_cache_fetch(self, resource: str, outcome: str, duration: float):
        """Record a completed fetch and its duration."""
        self._metrics["cache_fetches_total"].labels(resource=resource, outcome=outcome).inc()
        self._metrics["cache_fetch_duration_seconds"].labels(resource=resource).observe(duration)

    def set_cache_entries(self, count: int):
        """Set the current cache size."""
        with self._lock:
            self._metrics["cache_entries"].set(count)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
