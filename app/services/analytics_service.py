"""
Webhook analytics, query views and cleanup.

Read-only aggregates are computed by the event store. Cleanup operations are
irreversible and only ever remove events in a terminal state.
"""
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.logging_config import get_logger
from app.models.base import as_naive_utc, utcnow
from app.repositories.webhook_event_repo import WebhookEventRepository
from app.routes.metrics import track_cleanup
from app.schemas.webhook import (
    CleanupResult,
    DailyCount,
    FailureReasonCount,
    WebhookAnalytics,
    WebhookEventListResponse,
    WebhookEventResponse,
    WebhookStats,
)
from app.services.webhook_service import to_list_response


log = get_logger(component="webhook_analytics")


def period_label(start_date: datetime | None, end_date: datetime | None) -> str:
    if start_date is None and end_date is None:
        return "all_time"
    if start_date is not None and end_date is not None:
        return f"{(end_date - start_date).days}d"
    return "custom"


class AnalyticsService:
    """Statistics, listings and maintenance for webhook events."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = WebhookEventRepository(db)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def get_webhook_stats(
        self,
        tenant_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> WebhookStats:
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        stats = await self.repo.get_webhook_stats(tenant_id, start_date, end_date)
        return WebhookStats(tenant_id=tenant_id, **stats)

    async def get_webhook_analytics(
        self,
        tenant_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> WebhookAnalytics:
        """Stats plus average delivery time, top failure reasons and a daily series."""
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        stats = await self.repo.get_webhook_stats(tenant_id, start_date, end_date)
        avg_delivery = await self.repo.get_average_delivery_time(tenant_id, start_date, end_date)
        reasons = await self.get_failure_reasons(tenant_id, limit=10)
        daily = await self.repo.get_daily_counts(tenant_id, start_date, end_date)

        return WebhookAnalytics(
            tenant_id=tenant_id,
            period=period_label(start_date, end_date),
            start_date=start_date,
            end_date=end_date,
            total_events=stats["total_webhooks"],
            successful_deliveries=stats["delivered_webhooks"],
            failed_deliveries=stats["failed_webhooks"],
            pending_deliveries=stats["pending_webhooks"],
            delivery_rate=stats["delivery_rate"],
            average_attempts=stats["average_attempts"],
            average_delivery_seconds=avg_delivery.total_seconds(),
            events_by_type=stats["by_event_type"],
            top_failure_reasons=reasons,
            daily=[DailyCount(date=day, total=total, delivered=delivered) for day, total, delivered in daily],
        )

    async def get_failure_reasons(self, tenant_id: str, limit: int = 10) -> list[FailureReasonCount]:
        if limit <= 0:
            limit = 10
        rows = await self.repo.get_failure_reasons(tenant_id, limit)
        return [FailureReasonCount(reason=reason, count=count) for reason, count in rows]

    # ------------------------------------------------------------------
    # Query views
    # ------------------------------------------------------------------

    async def get_pending_webhooks(self, tenant_id: str | None, limit: int = 50) -> list[WebhookEventResponse]:
        if limit <= 0:
            limit = 50
        events = await self.repo.get_pending_retries(limit, tenant_id=tenant_id)
        return [WebhookEventResponse.from_event(e) for e in events]

    async def get_failed_webhooks(self, tenant_id: str, page: int = 1, page_size: int = 20) -> WebhookEventListResponse:
        return to_list_response(await self.repo.get_failed_webhooks(tenant_id, page, page_size))

    async def get_delivered_webhooks(self, tenant_id: str, page: int = 1, page_size: int = 20) -> WebhookEventListResponse:
        return to_list_response(await self.repo.get_delivered_webhooks(tenant_id, page, page_size))

    async def get_recent_webhooks(
        self, tenant_id: str, hours: int = 24, page: int = 1, page_size: int = 20
    ) -> WebhookEventListResponse:
        if hours <= 0:
            hours = 24
        return to_list_response(await self.repo.get_recent_webhooks(tenant_id, hours, page, page_size))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_old_webhooks(self, older_than_days: int | None = None) -> CleanupResult:
        """Delete delivered or exhausted events older than the cutoff (default 90 days)."""
        if not older_than_days or older_than_days <= 0:
            older_than_days = settings.WEBHOOK_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=older_than_days)

        count = await self.repo.delete_old_webhooks(cutoff)
        track_cleanup("old", count)
        log.info("old_webhooks_cleaned_up", count=count, older_than_days=older_than_days)
        return CleanupResult(deleted=count, older_than_days=older_than_days)

    async def cleanup_delivered_webhooks(self, older_than_days: int | None = None) -> CleanupResult:
        """Delete events delivered before the cutoff (default 30 days)."""
        if not older_than_days or older_than_days <= 0:
            older_than_days = settings.WEBHOOK_DELIVERED_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=older_than_days)

        count = await self.repo.delete_delivered_webhooks(cutoff)
        track_cleanup("delivered", count)
        log.info("delivered_webhooks_cleaned_up", count=count, older_than_days=older_than_days)
        return CleanupResult(deleted=count, older_than_days=older_than_days)

    async def purge_failed_webhooks(
        self, max_attempts: int | None = None, older_than_days: int | None = None
    ) -> CleanupResult:
        """Delete exhausted events older than the cutoff (defaults: 3 attempts, 7 days)."""
        if not max_attempts or max_attempts <= 0:
            max_attempts = settings.WEBHOOK_DEFAULT_MAX_ATTEMPTS
        if not older_than_days or older_than_days <= 0:
            older_than_days = settings.WEBHOOK_FAILED_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=older_than_days)

        count = await self.repo.purge_failed_webhooks(max_attempts, cutoff)
        track_cleanup("failed", count)
        log.info(
            "failed_webhooks_purged",
            count=count,
            max_attempts=max_attempts,
            older_than_days=older_than_days,
        )
        return CleanupResult(deleted=count, older_than_days=older_than_days)
