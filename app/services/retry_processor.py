"""
Batch retry processor.

Pulls a bounded set of eligible events and drives each one through
WebhookService.deliver_webhook, one after another. A problem with one event
is recorded in the batch result and never aborts the rest of the batch.
"""
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.exceptions import WebhookError
from app.logging_config import get_logger
from app.models.base import utcnow
from app.models.webhook import WebhookEvent
from app.repositories.webhook_event_repo import WebhookEventFilters
from app.routes.metrics import track_batch
from app.schemas.webhook import RetryBatchResult
from app.services.webhook_service import WebhookService


log = get_logger(component="retry_processor")


class RetryProcessor:
    """Drives batches of events through the lifecycle manager."""

    def __init__(self, webhook_service: WebhookService):
        self.webhooks = webhook_service
        self.repo = webhook_service.repo

    async def _run(self, kind: str, events: list[WebhookEvent], check_due: bool) -> RetryBatchResult:
        result = RetryBatchResult()
        # Copy ids up front: a rollback inside the loop expires loaded rows.
        candidates = [(e.id, e.can_retry_now()) for e in events]
        for event_id, due in candidates:
            if check_due and not due:
                continue
            try:
                delivery = await self.webhooks.deliver_webhook(event_id)
            except (WebhookError, SQLAlchemyError) as exc:
                await self.webhooks.db.rollback()
                log.error("batch_event_failed", kind=kind, event_id=event_id, error=str(exc))
                result.record_error(event_id, str(exc))
                continue
            result.record(delivery)

        track_batch(kind, result.succeeded, result.failed)
        return result

    async def retry_failed_webhooks(self, tenant_id: str, limit: int = 10) -> RetryBatchResult:
        """
        Retry a tenant's failed events that still have attempts left.

        Events are attempted immediately, ignoring next_retry_at.
        """
        if limit <= 0:
            limit = 10
        page = await self.repo.get_failed_webhooks(tenant_id, page=1, page_size=limit, retryable_only=True)
        result = await self._run("retry_failed", page.items, check_due=False)

        log.info(
            "failed_webhooks_retried",
            tenant_id=tenant_id,
            retried=result.retried,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    async def bulk_retry_webhooks(
        self,
        tenant_id: str,
        event_type: str | None = None,
        older_than_hours: int | None = None,
    ) -> RetryBatchResult:
        """
        Retry failed events matching optional type and age filters.

        Events that are exhausted or not yet due are skipped and not counted.
        """
        filters = WebhookEventFilters(tenant_id=tenant_id, delivered=False, min_attempts=1)
        if event_type:
            filters.event_types = [getattr(event_type, "value", event_type)]
        if older_than_hours and older_than_hours > 0:
            filters.created_to = utcnow() - timedelta(hours=older_than_hours)

        page = await self.repo.find_by_filters(
            filters, page=1, page_size=settings.WEBHOOK_BULK_RETRY_PAGE_SIZE, oldest_first=True
        )
        result = await self._run("bulk_retry", page.items, check_due=True)

        log.info(
            "bulk_webhook_retry_completed",
            tenant_id=tenant_id,
            event_type=filters.event_types[0] if filters.event_types else None,
            retried=result.retried,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    async def process_pending_webhooks(self, batch_size: int | None = None) -> RetryBatchResult:
        """Deliver events whose retry time has elapsed. Entry point for the scheduler."""
        if not batch_size or batch_size <= 0:
            batch_size = settings.WEBHOOK_PROCESS_BATCH_SIZE

        events = await self.repo.get_pending_retries(batch_size)
        result = await self._run("process_pending", events, check_due=True)

        log.info(
            "pending_webhooks_processed",
            batch_size=batch_size,
            processed=result.retried,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result
