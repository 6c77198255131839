"""
Metrics Collection with Prometheus.

Exposes purchase funnel, service call and import metrics for monitoring.
"""

import time
from enum import Enum
from typing import Callable

from prometheus_client import Counter, Histogram, Info

from reconciler.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    REASON = "reason"
    OUTCOME = "outcome"


class PurchaseFailureReason(str, Enum):
    """Why a purchase flow did not end in Success."""

    BACKEND = "backend"
    ACCOUNT_CREATION = "account_creation"
    OTHER = "other"


class ReconcilerMetrics:
    """
    Centralized metrics for the reconciler.

    Covers:
    - Purchase funnel (success, activation, restores, failures by reason)
    - Remote service calls (rate, duration, status)
    - Credential imports (saved, skipped, finished jobs)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "reconciler_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.service_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Purchase Metrics
        # ====================================================================
        self.purchase_success_total = Counter(
            "reconciler_purchase_success_total",
            "Purchases confirmed with an active subscription",
        )

        self.subscription_activated_total = Counter(
            "reconciler_subscription_activated_total",
            "Times a subscription became active on this device",
        )

        self.restore_after_purchase_attempt_total = Counter(
            "reconciler_restore_after_purchase_attempt_total",
            "Purchase attempts that recovered an existing subscription instead",
        )

        self.purchase_failures_total = Counter(
            "reconciler_purchase_failures_total",
            "Purchase flows that ended without a confirmed subscription",
            [MetricLabels.REASON],
        )

        # ====================================================================
        # Remote Service Metrics
        # ====================================================================
        self.service_requests_total = Counter(
            "reconciler_service_requests_total",
            "Total requests to the account/subscription service",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.service_request_duration_seconds = Histogram(
            "reconciler_service_request_duration_seconds",
            "Account/subscription service request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Import Metrics
        # ====================================================================
        self.credentials_imported_total = Counter(
            "reconciler_credentials_imported_total",
            "Credentials handled by import jobs",
            [MetricLabels.OUTCOME],
        )

        self.import_jobs_finished_total = Counter(
            "reconciler_import_jobs_finished_total",
            "Import jobs that published a Finished result",
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_purchase_success(self) -> None:
        """Record a confirmed purchase, which also activates the subscription."""
        self.purchase_success_total.inc()
        self.subscription_activated_total.inc()

    def record_restore_after_purchase_attempt(self) -> None:
        """Record a purchase attempt short-circuited by a recovered subscription."""
        self.subscription_activated_total.inc()
        self.restore_after_purchase_attempt_total.inc()

    def record_purchase_failure(self, reason: PurchaseFailureReason) -> None:
        """Record a failed purchase flow."""
        self.purchase_failures_total.labels(reason=reason.value).inc()

    def record_service_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record remote service request metrics."""
        self.service_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.service_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_import_finished(self, saved: int, skipped: int) -> None:
        """Record the totals of a finished import job."""
        self.credentials_imported_total.labels(outcome="saved").inc(saved)
        self.credentials_imported_total.labels(outcome="skipped").inc(skipped)
        self.import_jobs_finished_total.inc()


# Global metrics instance
metrics = ReconcilerMetrics()


class track_service_request:
    """
    Context manager for tracking remote service requests.

    Usage:
        with track_service_request("subscription", "GET") as tracker:
            response = await client.get(...)
            tracker.set_status_code(response.status_code)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 0  # 0 = no response received
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_service_request":
        """Start tracking."""
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        if not settings.metrics_enabled:
            return
        duration = time.monotonic() - self.start_time
        metrics.record_service_request(self.endpoint, self.method, self.status_code, duration)


def get_metrics_handler() -> Callable[[], bytes]:
    """
    Get a Prometheus exposition callable for the host application.

    Usage:
        payload = get_metrics_handler()()
    """
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
