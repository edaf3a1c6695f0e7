"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, conflict, error
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Booking cancellation results',
    ['result']  # success, already_cancelled
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Credit ledger metrics
credit_operations = Counter(
    'credit_operations_total',
    'Credit ledger mutations',
    ['operation']  # add, deduct, refund
)

credits_moved = Counter(
    'credits_moved_total',
    'Credits moved through the ledger',
    ['operation']
)

# Swap and template metrics
swap_attempts = Counter(
    'swap_attempts_total',
    'Lesson swap attempts',
    ['status']  # success, conflict, error
)

template_applications = Counter(
    'template_applications_total',
    'Template applications and rollbacks',
    ['mode']  # applied, preview, rolled_back
)

# Database metrics
db_operations = Counter(
    'db_operations_total',
    'Total database operations',
    ['operation']  # lock, write
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

notification_failures = Counter(
    'notification_failures_total',
    'Domain events that could not be published',
    ['event_type']
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, error"""
    booking_attempts.labels(status=status).inc()


def record_cancellation_result(result: str):
    booking_cancellations.labels(result=result).inc()


def record_credit_operation(operation: str, amount: int):
    credit_operations.labels(operation=operation).inc()
    credits_moved.labels(operation=operation).inc(amount)


def record_swap_attempt(status: str):
    swap_attempts.labels(status=status).inc()


def record_template_application(mode: str):
    template_applications.labels(mode=mode).inc()


def record_db_operation(operation: str):
    """Record database operation. Operation: lock, write"""
    db_operations.labels(operation=operation).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
