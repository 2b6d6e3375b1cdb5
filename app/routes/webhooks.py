"""
Webhook API routes.

Operator and producer endpoints for recording, delivering, retrying,
inspecting and cleaning up webhook events.
"""
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.webhook import (
    BulkRetryRequest,
    CleanupResult,
    CreateWebhookEventRequest,
    DeliveryResult,
    FailureReasonCount,
    RetryBatchResult,
    RetryWebhookRequest,
    WebhookAnalytics,
    WebhookEventFilter,
    WebhookEventListResponse,
    WebhookEventResponse,
    WebhookStats,
)
from app.services.analytics_service import AnalyticsService
from app.services.retry_processor import RetryProcessor
from app.services.transport import WebhookTransport
from app.services.webhook_service import WebhookService
from app.worker import enqueue_delivery


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_transport() -> WebhookTransport:
    """Outbound HTTP transport. Overridden in tests."""
    return WebhookTransport()


def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    transport: WebhookTransport = Depends(get_transport),
) -> WebhookService:
    return WebhookService(db, transport=transport)


def get_retry_processor(service: WebhookService = Depends(get_webhook_service)) -> RetryProcessor:
    return RetryProcessor(service)


def get_analytics_service(db: AsyncSession = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db)


# ============================================
# Events
# ============================================

@router.post("", response_model=WebhookEventResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook_event(
    request: CreateWebhookEventRequest,
    background_tasks: BackgroundTasks,
    deliver_now: bool = False,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Record a webhook event for later delivery.

    The event is stored as pending and is due immediately; the scheduler
    picks it up on its next pass. With ``deliver_now`` a delivery job is
    also queued for the worker once the response is sent.
    """
    event = await service.create_webhook_event(
        tenant_id=request.tenant_id,
        event_type=request.event_type,
        target_url=request.target_url,
        payload=request.payload,
        max_attempts=request.max_attempts,
        metadata=request.metadata,
    )
    if deliver_now:
        background_tasks.add_task(enqueue_delivery, event.id)
    return event


@router.post("/list", response_model=WebhookEventListResponse)
async def list_webhook_events(
    filter_: WebhookEventFilter,
    service: WebhookService = Depends(get_webhook_service),
):
    """List a tenant's events matching the filter, newest first."""
    return await service.list_webhook_events(filter_)


@router.get("/pending", response_model=list[WebhookEventResponse])
async def get_pending_webhooks(
    tenant_id: str | None = None,
    limit: int = Query(50, ge=1, le=1000),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Events that are due for a delivery attempt."""
    return await analytics.get_pending_webhooks(tenant_id, limit)


@router.get("/failed", response_model=WebhookEventListResponse)
async def get_failed_webhooks(
    tenant_id: str,
    page: int = 1,
    page_size: int = 20,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return await analytics.get_failed_webhooks(tenant_id, page, page_size)


@router.get("/delivered", response_model=WebhookEventListResponse)
async def get_delivered_webhooks(
    tenant_id: str,
    page: int = 1,
    page_size: int = 20,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return await analytics.get_delivered_webhooks(tenant_id, page, page_size)


@router.get("/recent", response_model=WebhookEventListResponse)
async def get_recent_webhooks(
    tenant_id: str,
    hours: int = 24,
    page: int = 1,
    page_size: int = 20,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Events created within the last ``hours`` hours."""
    return await analytics.get_recent_webhooks(tenant_id, hours, page, page_size)


# ============================================
# Analytics
# ============================================

@router.get("/stats", response_model=WebhookStats)
async def get_webhook_stats(
    tenant_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return await analytics.get_webhook_stats(tenant_id, start_date, end_date)


@router.get("/analytics", response_model=WebhookAnalytics)
async def get_webhook_analytics(
    tenant_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Stats, average delivery time, top failure reasons and daily counts."""
    return await analytics.get_webhook_analytics(tenant_id, start_date, end_date)


@router.get("/failure-reasons", response_model=list[FailureReasonCount])
async def get_failure_reasons(
    tenant_id: str,
    limit: int = 10,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return await analytics.get_failure_reasons(tenant_id, limit)


@router.get("/service-metrics", response_model=WebhookStats)
async def get_service_metrics(service: WebhookService = Depends(get_webhook_service)):
    """Delivery totals across all tenants."""
    return await service.get_service_metrics()


# ============================================
# Batch retry
# ============================================

@router.post("/tenant/{tenant_id}/retry-failed", response_model=RetryBatchResult)
async def retry_failed_webhooks(
    tenant_id: str,
    limit: int = 10,
    processor: RetryProcessor = Depends(get_retry_processor),
):
    """Retry up to ``limit`` failed events that still have attempts left."""
    return await processor.retry_failed_webhooks(tenant_id, limit)


@router.post("/bulk-retry", response_model=RetryBatchResult)
async def bulk_retry_webhooks(
    request: BulkRetryRequest,
    processor: RetryProcessor = Depends(get_retry_processor),
):
    return await processor.bulk_retry_webhooks(
        request.tenant_id,
        event_type=request.event_type,
        older_than_hours=request.older_than_hours,
    )


@router.post("/process-pending", response_model=RetryBatchResult)
async def process_pending_webhooks(
    batch_size: int | None = None,
    processor: RetryProcessor = Depends(get_retry_processor),
):
    """Run one scheduler pass on demand."""
    return await processor.process_pending_webhooks(batch_size)


# ============================================
# Cleanup
# ============================================

@router.post("/cleanup/old", response_model=CleanupResult)
async def cleanup_old_webhooks(
    older_than_days: int | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Delete delivered or exhausted events older than the cutoff."""
    return await analytics.cleanup_old_webhooks(older_than_days)


@router.post("/cleanup/delivered", response_model=CleanupResult)
async def cleanup_delivered_webhooks(
    older_than_days: int | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return await analytics.cleanup_delivered_webhooks(older_than_days)


@router.post("/purge-failed", response_model=CleanupResult)
async def purge_failed_webhooks(
    max_attempts: int | None = None,
    older_than_days: int | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Delete exhausted events older than the cutoff."""
    return await analytics.purge_failed_webhooks(max_attempts, older_than_days)


# ============================================
# Single event
# ============================================

@router.get("/{event_id}", response_model=WebhookEventResponse)
async def get_webhook_event(
    event_id: str,
    service: WebhookService = Depends(get_webhook_service),
):
    return await service.get_webhook_event(event_id)


@router.post("/{event_id}/deliver", response_model=DeliveryResult)
async def deliver_webhook(
    event_id: str,
    service: WebhookService = Depends(get_webhook_service),
):
    """Make one delivery attempt now."""
    return await service.deliver_webhook(event_id)


@router.post("/{event_id}/retry", response_model=DeliveryResult)
async def retry_webhook(
    event_id: str,
    request: RetryWebhookRequest | None = None,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Force a delivery attempt outside the schedule.

    With reset_attempts the attempt budget is restored first, so even an
    exhausted event gets another try.
    """
    reset_attempts = request.reset_attempts if request else False
    return await service.retry_webhook(event_id, reset_attempts=reset_attempts)
