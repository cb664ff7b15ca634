"""
Shared metrics configuration for the Event Context layer.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class MetricsCollector:
    """Prometheus counters describing cache behaviour for one execution context."""

    def __init__(self, service_name: str = "event_context", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Several execution contexts may share a process, so each collector
        # owns a registry unless one is handed in.
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        self._metrics["cache_hits_total"] = Counter(
            "role_cache_hits_total",
            "Role lookups answered from the in-memory mirror",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "role_cache_misses_total",
            "Role lookups that needed a network fetch",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["role_fetches_total"] = Counter(
            "role_fetches_total",
            "Role lookup requests by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["storage_errors_total"] = Counter(
            "role_cache_storage_errors_total",
            "Swallowed durable storage failures",
            ["operation"],
            registry=self.registry
        )

        self._metrics["broadcasts_total"] = Counter(
            "role_cache_broadcasts_total",
            "Cross-context broadcasts",
            ["direction", "outcome"],
            registry=self.registry
        )

        self._metrics["session_transitions_total"] = Counter(
            "role_cache_session_transitions_total",
            "Session lifecycle transitions",
            ["transition"],
            registry=self.registry
        )

        self._metrics["cached_events"] = Gauge(
            "role_cache_entries",
            "Event ids currently held in the in-memory mirror",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def get_sample(self, metric_name: str, **labels) -> float:
        """Read back a sample value, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(metric_name, labels or None)
        return value or 0.0


def get_metrics_collector(service_name: str = "event_context",
                          registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
