"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Purchase / booking metrics
purchase_attempts = Counter(
    'program_ticket_purchases_total',
    'Total program ticket purchase attempts',
    ['status']  # success, rejected, conflict, error
)

booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['kind', 'status']  # program/one_off/claim; success, partial, rejected, duplicate, conflict
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'End-to-end booking saga latency',
    ['kind'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# External platform metrics
external_reservations = Counter(
    'external_reservations_total',
    'Per-attendee external reservation outcomes',
    ['platform', 'result']  # backstage/zoom/none; success, duplicate, failed
)

invoice_requests = Counter(
    'invoice_requests_total',
    'Invoice creation requests to the accounting platform',
    ['result']  # created, failed
)

oauth_token_refreshes = Counter(
    'oauth_token_refreshes_total',
    'OAuth access token refreshes',
    ['provider', 'result']  # success, error
)

# Ledger metrics
ledger_operations = Counter(
    'ledger_operations_total',
    'Program ticket ledger rows written',
    ['transaction_type']
)

balance_conflicts = Counter(
    'balance_conflicts_total',
    'Conditional balance/voucher updates that matched no row',
    ['resource']  # ticket_balance, training_fund, voucher, discount_code
)

# Redis guard metrics
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

balance_guard_fail_open = Gauge(
    'balance_guard_fail_open',
    'Balance guard running without Redis (1=fail-open, 0=healthy)'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

# Convenience functions for instrumentation
def record_purchase_attempt(status: str):
    """Record purchase attempt. Status: success, rejected, conflict, error"""
    purchase_attempts.labels(status=status).inc()

def record_booking_attempt(kind: str, status: str):
    booking_attempts.labels(kind=kind, status=status).inc()

def record_reservation(platform: str, result: str):
    external_reservations.labels(platform=platform, result=result).inc()

def record_invoice(created: bool):
    invoice_requests.labels(result="created" if created else "failed").inc()

def record_token_refresh(provider: str, success: bool):
    oauth_token_refreshes.labels(provider=provider, result="success" if success else "error").inc()

def record_ledger_operation(transaction_type: str):
    ledger_operations.labels(transaction_type=transaction_type).inc()

def record_balance_conflict(resource: str):
    """Record a lost conditional update. Resource: ticket_balance, training_fund, voucher, discount_code"""
    balance_conflicts.labels(resource=resource).inc()
