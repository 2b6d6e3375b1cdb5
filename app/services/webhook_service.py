"""
Webhook Service

Owns the per-event delivery state machine: creation, single-attempt
delivery, outcome recording and retry scheduling.

Ordering rule for an attempt: the attempt counter is committed before the
POST is sent, and the outcome is written in a separate, later commit. A crash
mid-delivery therefore still consumes an attempt.
"""
import json
import time
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import ValidationError
from app.logging_config import get_logger
from app.models.base import as_naive_utc, utcnow
from app.models.webhook import WebhookEvent
from app.repositories.webhook_event_repo import WebhookEventFilters, WebhookEventRepository
from app.routes.metrics import (
    track_delivery_attempt,
    track_webhook_created,
    track_webhook_exhausted,
)
from app.schemas.webhook import (
    DeliveryResult,
    WebhookEventFilter,
    WebhookEventListResponse,
    WebhookEventResponse,
    WebhookStats,
)
from app.services.backoff import BackoffSchedule
from app.services.transport import WebhookTransport
from app.services.triggers import EventTrigger


EXHAUSTED_REASON = "maximum delivery attempts reached"


def to_list_response(page) -> WebhookEventListResponse:
    """Convert a repository Page into the API list shape."""
    return WebhookEventListResponse(
        events=[WebhookEventResponse.from_event(e) for e in page.items],
        page=page.page,
        page_size=page.page_size,
        total_items=page.total_items,
        total_pages=page.total_pages,
        has_next=page.has_next,
        has_previous=page.has_previous,
    )


def stored_success(event: WebhookEvent) -> DeliveryResult:
    """Result for an event that was already delivered; no attempt is made."""
    return DeliveryResult(
        webhook_event_id=event.id,
        delivered=True,
        attempt_count=event.attempt_count,
        response_code=event.response_code,
        delivered_at=event.delivered_at,
    )


class WebhookService:
    """Lifecycle manager for webhook events."""

    def __init__(
        self,
        db: AsyncSession,
        transport: WebhookTransport | None = None,
        backoff: BackoffSchedule | None = None,
    ):
        self.db = db
        self.repo = WebhookEventRepository(db)
        self.transport = transport or WebhookTransport()
        self.backoff = backoff or BackoffSchedule(
            settings.WEBHOOK_BACKOFF_MINUTES, settings.WEBHOOK_BACKOFF_JITTER
        )

    # ------------------------------------------------------------------
    # Event management
    # ------------------------------------------------------------------

    async def create_webhook_event(
        self,
        tenant_id: str,
        event_type: str,
        target_url: str,
        payload: Any,
        max_attempts: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WebhookEventResponse:
        """
        Record a new event in pending state.

        Delivery is never attempted here; the scheduler or an operator
        drives it later.

        Raises:
            ValidationError: tenant_id, target_url or payload missing/invalid.
        """
        event_type = getattr(event_type, "value", event_type)
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        if not target_url:
            raise ValidationError("target_url is required")
        if payload is None:
            raise ValidationError("payload is required")
        if not event_type:
            raise ValidationError("event_type is required")
        if max_attempts is not None and max_attempts < 0:
            raise ValidationError("max_attempts must not be negative")
        try:
            json.dumps(payload)
            if metadata is not None:
                json.dumps(metadata)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid payload: {exc}") from exc

        now = utcnow()
        event = WebhookEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            target_url=target_url,
            payload=payload,
            max_attempts=max_attempts or settings.WEBHOOK_DEFAULT_MAX_ATTEMPTS,
            attempt_count=0,
            delivered=False,
            # Due immediately.
            next_retry_at=now,
            event_metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        event = await self.repo.create(event)

        track_webhook_created(tenant_id, event_type)
        get_logger(event_id=event.id, tenant_id=tenant_id).info(
            "webhook_event_created",
            event_type=event_type,
            url=target_url,
            max_attempts=event.max_attempts,
        )
        return WebhookEventResponse.from_event(event)

    async def trigger_event(
        self,
        tenant_id: str,
        event_type: str,
        target_url: str,
        trigger: EventTrigger,
        entity: Any,
        metadata: dict[str, Any] | None = None,
    ) -> WebhookEventResponse:
        """Create an event whose payload is built by a business-domain trigger."""
        payload = trigger.build_payload(event_type, entity, tenant_id)
        return await self.create_webhook_event(
            tenant_id=tenant_id,
            event_type=event_type,
            target_url=target_url,
            payload=payload,
            metadata=metadata,
        )

    async def get_webhook_event(self, event_id: str) -> WebhookEventResponse:
        event = await self.repo.get_by_id(event_id)
        return WebhookEventResponse.from_event(event)

    async def list_webhook_events(self, filter_: WebhookEventFilter) -> WebhookEventListResponse:
        filters = WebhookEventFilters(
            tenant_id=filter_.tenant_id,
            event_types=filter_.event_types or [],
            delivered=filter_.delivered,
            target_url=filter_.target_url,
            min_attempts=filter_.min_attempts,
            max_attempts=filter_.max_attempts,
            created_from=as_naive_utc(filter_.created_from),
            created_to=as_naive_utc(filter_.created_to),
            response_codes=filter_.response_codes or [],
        )
        page = await self.repo.find_by_filters(filters, filter_.page, filter_.page_size)
        return to_list_response(page)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver_webhook(self, event_id: str) -> DeliveryResult:
        """
        Make exactly one delivery attempt for an event.

        Already delivered events return their stored result without an
        attempt. Exhausted events return a failure without an attempt.

        Raises:
            NotFoundError: event does not exist.
            StoreError: the event store failed.
        """
        event = await self.repo.get_by_id(event_id)
        log = get_logger(event_id=event.id, tenant_id=event.tenant_id)

        if event.delivered:
            return stored_success(event)

        event_id = event.id
        tenant_id = event.tenant_id
        target_url = event.target_url
        payload = event.payload
        max_attempts = event.max_attempts

        attempt = await self.repo.increment_attempt_count(event_id)
        if attempt is None:
            # Refused by the store: exhausted, or delivered by another worker meanwhile.
            event = await self.repo.get_by_id(event_id)
            if event.delivered:
                return stored_success(event)
            log.warning("webhook_delivery_skipped", reason=EXHAUSTED_REASON, attempts=event.attempt_count)
            return DeliveryResult(
                webhook_event_id=event.id,
                delivered=False,
                attempt_count=event.attempt_count,
                response_code=event.response_code,
                failure_reason=EXHAUSTED_REASON,
            )

        started = time.monotonic()
        outcome = await self.transport.send(target_url, payload)
        track_delivery_attempt(tenant_id, outcome.ok, time.monotonic() - started)

        if outcome.ok:
            delivered_at = await self.repo.mark_as_delivered(event_id, outcome.status_code, outcome.body)
            log.info("webhook_delivered", attempt=attempt, status_code=outcome.status_code)
            return DeliveryResult(
                webhook_event_id=event_id,
                delivered=True,
                attempt_count=attempt,
                response_code=outcome.status_code,
                response_body=outcome.body,
                delivered_at=delivered_at,
            )

        await self.repo.mark_as_failed(event_id, outcome.status_code, outcome.error, outcome.body)

        next_retry_at = None
        if attempt < max_attempts:
            next_retry_at = self.backoff.next_retry_time(attempt)
        else:
            track_webhook_exhausted(tenant_id)
        await self.repo.set_next_retry_time(event_id, next_retry_at)

        log.warning(
            "webhook_delivery_failed",
            attempt=attempt,
            max_attempts=max_attempts,
            status_code=outcome.status_code,
            error=outcome.error,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
        )
        return DeliveryResult(
            webhook_event_id=event_id,
            delivered=False,
            attempt_count=attempt,
            response_code=outcome.status_code,
            response_body=outcome.body,
            failure_reason=outcome.error,
            next_retry_at=next_retry_at,
        )

    async def retry_webhook(self, event_id: str, reset_attempts: bool = False) -> DeliveryResult:
        """
        Force an immediate attempt outside the normal schedule.

        With ``reset_attempts`` the event gets a fresh attempt budget first.
        """
        if reset_attempts:
            await self.repo.get_by_id(event_id)
            if await self.repo.reset_for_retry(event_id):
                get_logger(event_id=event_id).info("webhook_reset_for_retry")
        return await self.deliver_webhook(event_id)

    # ------------------------------------------------------------------
    # Health & monitoring
    # ------------------------------------------------------------------

    async def health_check(self) -> None:
        """Raises StoreError when the event store is unreachable."""
        await self.repo.ping()

    async def get_service_metrics(self) -> WebhookStats:
        """Delivery totals across all tenants."""
        stats = await self.repo.get_webhook_stats(None)
        return WebhookStats(**stats)
