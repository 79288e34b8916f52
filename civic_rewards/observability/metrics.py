"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from civic_rewards.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TRANSACTION_TYPE = "transaction_type"
    SOURCE = "source"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class RewardsMetrics:
    """
    Centralized metrics for the Civic Rewards API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Ledger writes (rate, amount, outcome)
    - Report transitions
    - Redemptions (rate, outcome)
    - AI enrichment (outcome, fallbacks)
    - Unit-of-work conflicts
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "rewards_service",
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
            "rewards_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "rewards_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "rewards_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_operations_total = Counter(
            "rewards_ledger_operations_total",
            "Total ledger writes",
            [MetricLabels.TRANSACTION_TYPE, MetricLabels.SOURCE, MetricLabels.OUTCOME],
        )

        self.ledger_amount_points = Histogram(
            "rewards_ledger_amount_points",
            "Points moved per ledger write",
            [MetricLabels.TRANSACTION_TYPE],
            buckets=(10, 25, 50, 100, 150, 200, 500, 1000, 5000),
        )

        # ====================================================================
        # Report Metrics
        # ====================================================================
        self.report_transitions_total = Counter(
            "rewards_report_transitions_total",
            "Report status transitions",
            ["from_status", "to_status"],
        )

        self.reports_created_total = Counter(
            "rewards_reports_created_total",
            "Total reports created",
            ["category"],
        )

        # ====================================================================
        # Redemption Metrics
        # ====================================================================
        self.redemptions_total = Counter(
            "rewards_redemptions_total",
            "Redemption attempts",
            [MetricLabels.OUTCOME],
        )

        self.redemption_duration_seconds = Histogram(
            "rewards_redemption_duration_seconds",
            "Redemption duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # AI Enrichment Metrics
        # ====================================================================
        self.ai_enrichments_total = Counter(
            "rewards_ai_enrichments_total",
            "AI enrichment runs",
            [MetricLabels.OUTCOME],
        )

        self.ai_fallbacks_total = Counter(
            "rewards_ai_fallbacks_total",
            "AI backend calls that degraded to the fallback result",
            [MetricLabels.OPERATION, "reason"],
        )

        # ====================================================================
        # Concurrency / Error Metrics
        # ====================================================================
        self.unit_of_work_conflicts_total = Counter(
            "rewards_unit_of_work_conflicts_total",
            "Transactions aborted by contention",
            ["resource_kind"],
        )

        self.errors_total = Counter(
            "rewards_errors_total",
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

    def record_ledger_operation(
        self, transaction_type: str, source: str, success: bool, amount: int
    ) -> None:
        """Record a ledger write attempt."""
        self.ledger_operations_total.labels(
            transaction_type=transaction_type,
            source=source,
            outcome="success" if success else "failure",
        ).inc()
        if success:
            self.ledger_amount_points.labels(transaction_type=transaction_type).observe(amount)

    def record_report_transition(self, from_status: str, to_status: str) -> None:
        """Record a report status change."""
        self.report_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    def record_report_created(self, category: str) -> None:
        """Record a new report."""
        self.reports_created_total.labels(category=category).inc()

    def record_redemption(self, outcome: str, duration: float) -> None:
        """Record a redemption attempt and how long it took."""
        self.redemptions_total.labels(outcome=outcome).inc()
        self.redemption_duration_seconds.observe(duration)

    def record_ai_enrichment(self, outcome: str) -> None:
        """Record an AI enrichment run."""
        self.ai_enrichments_total.labels(outcome=outcome).inc()

    def record_ai_fallback(self, operation: str, reason: str) -> None:
        """Record an AI backend call that used the fallback result."""
        self.ai_fallbacks_total.labels(operation=operation, reason=reason).inc()

    def record_conflict(self, resource: str) -> None:
        """Record a transaction aborted by contention."""
        self.unit_of_work_conflicts_total.labels(resource_kind=resource.split(":", 1)[0]).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = RewardsMetrics()
