"""
Prometheus metrics endpoint.

Exposes webhook delivery metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Webhook Metrics
# ============================================

webhooks_created = Counter(
    'webhooks_created_total',
    'Total webhook events recorded',
    ['tenant_id', 'event_type']
)

webhook_attempts = Counter(
    'webhook_delivery_attempts_total',
    'Total webhook delivery attempts by outcome',
    ['tenant_id', 'outcome']
)

webhooks_exhausted = Counter(
    'webhooks_exhausted_total',
    'Total webhook events that used up all attempts',
    ['tenant_id']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Duration of a single webhook POST',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# ============================================
# Batch / Maintenance Metrics
# ============================================

webhook_batches = Counter(
    'webhook_batches_total',
    'Total batch retry runs',
    ['kind']
)

webhook_batch_events = Counter(
    'webhook_batch_events_total',
    'Events processed by batch retry runs',
    ['kind', 'outcome']
)

webhooks_deleted = Counter(
    'webhooks_deleted_total',
    'Webhook events removed by cleanup',
    ['operation']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """Record HTTP request metrics."""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_webhook_created(tenant_id: str, event_type: str):
    """Record a webhook event being stored."""
    webhooks_created.labels(tenant_id=tenant_id, event_type=event_type).inc()


def track_delivery_attempt(tenant_id: str, delivered: bool, duration_seconds: float):
    """Record one delivery attempt and its duration."""
    outcome = "delivered" if delivered else "failed"
    webhook_attempts.labels(tenant_id=tenant_id, outcome=outcome).inc()
    webhook_delivery_duration.observe(duration_seconds)


def track_webhook_exhausted(tenant_id: str):
    """Record an event reaching its attempt limit."""
    webhooks_exhausted.labels(tenant_id=tenant_id).inc()


def track_batch(kind: str, succeeded: int, failed: int):
    """Record a batch retry run."""
    webhook_batches.labels(kind=kind).inc()
    webhook_batch_events.labels(kind=kind, outcome="succeeded").inc(succeeded)
    webhook_batch_events.labels(kind=kind, outcome="failed").inc(failed)


def track_cleanup(operation: str, deleted: int):
    """Record cleanup deletions."""
    webhooks_deleted.labels(operation=operation).inc(deleted)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
