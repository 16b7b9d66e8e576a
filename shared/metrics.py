"""
Shared metrics configuration for the Points service.
"""

from typing import Dict, Any, Optional
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Info, start_http_server, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # A private registry keeps repeated engine construction from colliding
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_points_metrics()

    def _setup_points_metrics(self):
        """Set up points-engine metrics."""
        self._metrics["events_processed_total"] = Counter(
            "events_processed_total",
            "Total events processed",
            ["action_type"],
            registry=self.registry
        )

        self._metrics["rules_applied_total"] = Counter(
            "rules_applied_total",
            "Total rule distributions",
            ["rule", "status"],
            registry=self.registry
        )

        self._metrics["points_awarded_total"] = Counter(
            "points_awarded_total",
            "Total absolute group points moved",
            ["kind"],
            registry=self.registry
        )

        self._metrics["cap_clamps_total"] = Counter(
            "cap_clamps_total",
            "Total capped award decisions",
            ["rule", "result"],
            registry=self.registry
        )

        self._metrics["cap_resets_total"] = Counter(
            "cap_resets_total",
            "Total lazy cap resets",
            ["rule"],
            registry=self.registry
        )

        self._metrics["rule_distribution_duration_seconds"] = Histogram(
            "rule_distribution_duration_seconds",
            "Rule distribution duration in seconds",
            ["rule"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample back from the registry."""
        return self.registry.get_sample_value(name, labels or {})

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc(amount)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
