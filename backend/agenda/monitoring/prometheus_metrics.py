"""
Prometheus metrics module for Agenda.

Service timings come from the @measure_operation decorator. Booking-specific
counters cover commits, retries, lock contention and notification delivery.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Kept apart from the default registry so /metrics only exposes agenda series
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "agenda_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "agenda_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "agenda_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_commits_total = Counter(
    "agenda_booking_commits_total",
    "Booking commit outcomes",
    ["kind", "outcome"],  # kind: single | batch, outcome: success | conflict
    registry=REGISTRY,
)

booking_commit_retries_total = Counter(
    "agenda_booking_commit_retries_total",
    "Commits retried after a write-time overlap was detected",
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "agenda_booking_lock_total",
    "Per-day booking lock operations",
    ["action", "outcome"],
    registry=REGISTRY,
)

notifications_total = Counter(
    "agenda_notifications_total",
    "Outbound message jobs by terminal status",
    ["job_type", "status"],
    registry=REGISTRY,
)

notifications_dispatch_seconds = Histogram(
    "agenda_notifications_dispatch_seconds",
    "Message gateway dispatch duration in seconds",
    ["job_type"],
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Thin recording facade over the agenda collectors."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Called by ``BaseService.measure_operation`` after every wrapped call."""
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_booking_commit(kind: str, outcome: str) -> None:
        booking_commits_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_booking_retry() -> None:
        booking_commit_retries_total.inc()

    @staticmethod
    def record_booking_lock(action: str, outcome: str) -> None:
        booking_lock_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_notification_outcome(job_type: str, status: str) -> None:
        notifications_total.labels(job_type=job_type, status=status).inc()

    @staticmethod
    def observe_notification_dispatch(job_type: str, duration: float) -> None:
        notifications_dispatch_seconds.labels(job_type=job_type).observe(max(duration, 0.0))

    @staticmethod
    def get_metrics() -> bytes:
        """Current values of every agenda series in text exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
