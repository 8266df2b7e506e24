"""
Prometheus metrics for the booking engine.

Service timings are fed by the @measure_operation decorator; domain counters
are incremented by the booking, ledger and refund services.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "booking_engine_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "booking_engine_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "booking_engine_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific counters
booking_outcomes_total = Counter(
    "booking_engine_booking_outcomes_total",
    "Booking requests by terminal outcome",
    ["operation", "outcome"],  # outcome: committed | rejection code
    registry=REGISTRY,
)

credit_debits_total = Counter(
    "booking_engine_credit_debits_total",
    "Credit debit attempts by outcome",
    ["outcome"],  # success | insufficient
    registry=REGISTRY,
)

refunds_total = Counter(
    "booking_engine_refunds_total",
    "Refunds issued by method",
    ["method", "trigger"],  # trigger: automatic | manual
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "booking_engine_booking_lock_total",
    "Booking mutex operations by result",
    ["action", "result"],
    registry=REGISTRY,
)

# Background-job failure counter grouped by job type.
BACKGROUND_JOB_FAILURES_TOTAL = Counter(
    "background_job_failures_total",
    "Background jobs that failed",
    ["type"],
    registry=REGISTRY,
)

BACKGROUND_JOBS_FAILED = Gauge(
    "background_jobs_failed",
    "Background jobs currently in the dead-letter queue",
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingTransactionService')
            operation: Operation/method name (e.g., 'book_lesson')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_booking_outcome(operation: str, outcome: str) -> None:
        booking_outcomes_total.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def record_credit_debit(outcome: str) -> None:
        credit_debits_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_refund(method: str, trigger: str) -> None:
        refunds_total.labels(method=method, trigger=trigger).inc()

    @staticmethod
    def record_booking_lock(action: str, result: str) -> None:
        booking_lock_total.labels(action=action, result=result).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
