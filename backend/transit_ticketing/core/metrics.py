"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Ticket issuance metrics
ticket_issuance_attempts = Counter(
    'ticket_issuance_attempts_total',
    'Total ticket issuance attempts',
    ['status']  # issued, not_found, dependency_error, partial_failure
)

ticket_issuance_latency = Histogram(
    'ticket_issuance_latency_seconds',
    'Ticket issuance latency across both stores',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

compensation_actions = Counter(
    'ticket_compensation_actions_total',
    'Compensating actions run after a failed durable write',
    ['action', 'result']  # result: succeeded, failed
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'User cache operations',
    ['operation', 'result']  # get/set/lookup, hit/miss/error
)

cache_purges = Counter(
    'cache_purges_total',
    'Full user-cache purges triggered by the population monitor'
)

cached_users = Gauge(
    'cached_users_tracked',
    'Length of the cached-users tracking list at last admission check'
)

# Store metrics
store_errors = Counter(
    'store_errors_total',
    'Store call failures',
    ['store', 'kind']  # store: durable/ephemeral, kind: timeout/error/integrity
)

request_latency = Histogram(
    'http_request_latency_seconds',
    'HTTP request latency',
    ['method', 'status_code'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


def metrics_endpoint() -> Response:
    """Render the default registry in Prometheus text format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_issuance(status: str):
    ticket_issuance_attempts.labels(status=status).inc()


def record_cache_operation(operation: str, result: str):
    """Record cache operation. Result: hit, miss, error, ok"""
    cache_operations.labels(operation=operation, result=result).inc()


def record_compensation(action: str, succeeded: bool):
    compensation_actions.labels(action=action, result="succeeded" if succeeded else "failed").inc()


def record_store_error(store: str, kind: str):
    store_errors.labels(store=store, kind=kind).inc()
