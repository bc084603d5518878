"""
Shared metrics configuration for the CRM API gateway.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized Prometheus metrics for a service.

    Every collector owns its registry, so several gateway instances (and test
    apps) can live in one process without duplicate-timeseries errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "gateway":
            self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["gateway_decisions_total"] = Counter(
            "gateway_decisions_total",
            "Gateway decisions by terminal state",
            ["decision"],
            registry=self.registry
        )

        self._metrics["gateway_rate_limit_hits_total"] = Counter(
            "gateway_rate_limit_hits_total",
            "Requests rejected by the rate limiter",
            ["tenant_id"],
            registry=self.registry
        )

        self._metrics["gateway_anomaly_score"] = Histogram(
            "gateway_anomaly_score",
            "Anomaly risk score per evaluated request",
            buckets=(0, 10, 25, 40, 55, 70, 85, 100),
            registry=self.registry
        )

        self._metrics["gateway_response_time_seconds"] = Histogram(
            "gateway_response_time_seconds",
            "Wrapped application response time in seconds",
            ["method"],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry
        )

        self._metrics["gateway_responses_total"] = Counter(
            "gateway_responses_total",
            "Wrapped application responses by status class",
            ["status_class"],
            registry=self.registry
        )

        self._metrics["gateway_alerts_total"] = Counter(
            "gateway_alerts_total",
            "Alerts raised for server-side failures",
            ["tenant_id"],
            registry=self.registry
        )

        self._metrics["gateway_store_errors_total"] = Counter(
            "gateway_store_errors_total",
            "Key-value store failures absorbed by the fail-open policy",
            ["component"],
            registry=self.registry
        )

        self._metrics["gateway_inflight_requests"] = Gauge(
            "gateway_inflight_requests",
            "Requests currently inside the gateway pipeline",
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)

    @contextmanager
    def track_inflight(self):
        """Count a request as in flight for the duration of the block."""
        gauge = self._metrics.get("gateway_inflight_requests")
        if gauge is None:
            yield
            return
        gauge.inc()
        try:
            yield
        finally:
            gauge.dec()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
