"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from hotspot.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ENFORCER = "enforcer"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class HotspotMetrics:
    """
    Centralized metrics for the access gateway.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Fraud gate decisions
    - Payment status transitions
    - Provider callbacks
    - Enforcer operations and removal sweeps
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "hotspot_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "hotspot_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "hotspot_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "hotspot_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Fraud Gate Metrics
        # ====================================================================
        self.fraud_decisions_total = Counter(
            "hotspot_fraud_decisions_total",
            "Fraud gate decisions",
            ["allowed", "reason"],
        )

        self.fraud_risk_score = Histogram(
            "hotspot_fraud_risk_score",
            "Risk scores computed by the fraud gate",
            buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payment_transitions_total = Counter(
            "hotspot_payment_transitions_total",
            "Payment status transitions",
            ["status"],
        )

        self.webhook_events_total = Counter(
            "hotspot_webhook_events_total",
            "Provider callbacks by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Enforcement Metrics
        # ====================================================================
        self.enforcer_operations_total = Counter(
            "hotspot_enforcer_operations_total",
            "Enforcer apply/remove calls",
            [MetricLabels.ENFORCER, MetricLabels.OPERATION, "success"],
        )

        self.enforcer_duration_seconds = Histogram(
            "hotspot_enforcer_duration_seconds",
            "Enforcer call duration in seconds",
            [MetricLabels.ENFORCER, MetricLabels.OPERATION],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.removals_swept_total = Counter(
            "hotspot_removals_swept_total",
            "Grants removed by the deferred removal sweep",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "hotspot_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_fraud_decision(self, allowed: bool, reason: str | None, risk_score: int) -> None:
        """Record a fraud gate verdict."""
        self.fraud_decisions_total.labels(allowed=str(allowed), reason=reason or "none").inc()
        self.fraud_risk_score.observe(risk_score)

    def record_payment_transition(self, status: str) -> None:
        """Record a payment entering status."""
        self.payment_transitions_total.labels(status=status).inc()

    def record_webhook(self, outcome: str) -> None:
        """Record a processed provider callback."""
        self.webhook_events_total.labels(outcome=outcome).inc()

    def record_enforcer_call(
        self, enforcer: str, operation: str, success: bool, duration: float
    ) -> None:
        """Record one enforcer apply/remove."""
        self.enforcer_operations_total.labels(
            enforcer=enforcer, operation=operation, success=str(success)
        ).inc()
        self.enforcer_duration_seconds.labels(enforcer=enforcer, operation=operation).observe(
            duration
        )

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = HotspotMetrics()
