"""
Shared metrics configuration for the Payments Access Layer.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
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

        # HTTP metrics
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

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_qpay_metrics()

    def _setup_qpay_metrics(self):
        """Set up QPay gateway client metrics."""
        self._metrics["qpay_token_acquisitions_total"] = Counter(
            "qpay_token_acquisitions_total",
            "Total token acquisitions against the gateway",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["qpay_token_refreshes_total"] = Counter(
            "qpay_token_refreshes_total",
            "Total token refreshes against the gateway",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["qpay_auth_cascade_total"] = Counter(
            "qpay_auth_cascade_total",
            "Outcomes of the 401 recovery cascade",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["qpay_token_anomalies_total"] = Counter(
            "qpay_token_anomalies_total",
            "Token TTL anomalies detected by the token store",
            ["kind"],
            registry=self.registry
        )

        self._metrics["qpay_gateway_requests_total"] = Counter(
            "qpay_gateway_requests_total",
            "Business requests sent to the gateway",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["qpay_gateway_request_duration_seconds"] = Histogram(
            "qpay_gateway_request_duration_seconds",
            "Gateway business request duration in seconds",
            ["method"],
            registry=self.registry
        )

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
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
