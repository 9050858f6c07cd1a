"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from studycards.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    MODEL = "model"
    OUTCOME = "outcome"


class StudyCardsMetrics:
    """
    Centralized metrics for the StudyCards API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Payment creation and webhook reconciliation
    - Premium grants and quota rejections
    - Flashcard generation and LLM model attempts
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "studycards_service",
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
            "studycards_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "studycards_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "studycards_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payments_created_total = Counter(
            "studycards_payments_created_total",
            "Payment creation attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.webhooks_total = Counter(
            "studycards_payment_webhooks_total",
            "Gateway notifications processed",
            ["gateway_status", "local_status", "status_changed"],
        )

        self.webhook_rejections_total = Counter(
            "studycards_payment_webhook_rejections_total",
            "Gateway notifications rejected before reconciliation",
            ["reason"],
        )

        self.premium_grants_total = Counter(
            "studycards_premium_grants_total",
            "Premium grant attempts by outcome",
            ["source", MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Usage / Generation Metrics
        # ====================================================================
        self.quota_rejections_total = Counter(
            "studycards_quota_rejections_total",
            "Generation requests rejected for exhausted quota",
            ["tier"],
        )

        self.tier_downgrades_total = Counter(
            "studycards_tier_downgrades_total",
            "Expired premium subscriptions downgraded on read",
        )

        self.flashcards_generated_total = Counter(
            "studycards_flashcards_generated_total",
            "Flashcards generated",
            ["tier"],
        )

        self.llm_attempts_total = Counter(
            "studycards_llm_attempts_total",
            "LLM calls per model and outcome",
            [MetricLabels.MODEL, MetricLabels.OUTCOME],
        )

        self.llm_request_duration_seconds = Histogram(
            "studycards_llm_request_duration_seconds",
            "LLM completion duration in seconds",
            [MetricLabels.MODEL],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 60.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "studycards_errors_total",
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

    def record_webhook(self, gateway_status: str, local_status: str, status_changed: bool) -> None:
        """Record a reconciled gateway notification."""
        self.webhooks_total.labels(
            gateway_status=gateway_status,
            local_status=local_status,
            status_changed=str(status_changed),
        ).inc()

    def record_llm_attempt(self, model: str, outcome: str, duration: float) -> None:
        """Record one model attempt inside the fallback loop."""
        self.llm_attempts_total.labels(model=model, outcome=outcome).inc()
        self.llm_request_duration_seconds.labels(model=model).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StudyCardsMetrics()
