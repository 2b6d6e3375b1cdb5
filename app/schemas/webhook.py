"""
Request/response models for the webhook engine.

These are the shapes returned by the services and serialized by the API.
"""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.webhook import WebhookEvent


class CreateWebhookEventRequest(BaseModel):
    """Producer request for a new webhook event."""
    tenant_id: str
    event_type: str
    target_url: str
    payload: Any = None
    max_attempts: int | None = None
    metadata: dict[str, Any] | None = None


class WebhookEventResponse(BaseModel):
    """Webhook event as seen by producers and operators."""
    id: str
    tenant_id: str
    event_type: str
    target_url: str
    payload: Any
    status: str
    max_attempts: int
    attempt_count: int
    delivered: bool
    response_code: int | None = None
    response_body: str | None = None
    failure_reason: str | None = None
    next_retry_at: datetime | None = None
    last_attempted_at: datetime | None = None
    delivered_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_event(cls, event: WebhookEvent) -> "WebhookEventResponse":
        return cls(
            id=event.id,
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            target_url=event.target_url,
            payload=event.payload,
            status=event.status.value,
            max_attempts=event.max_attempts,
            attempt_count=event.attempt_count,
            delivered=event.delivered,
            response_code=event.response_code,
            response_body=event.response_body,
            failure_reason=event.failure_reason,
            next_retry_at=event.next_retry_at,
            last_attempted_at=event.last_attempted_at,
            delivered_at=event.delivered_at,
            metadata=event.event_metadata,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )


class WebhookEventListResponse(BaseModel):
    """One page of webhook events."""
    events: list[WebhookEventResponse]
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class WebhookEventFilter(BaseModel):
    """Operator-facing filter for listing events."""
    tenant_id: str
    event_types: list[str] | None = None
    delivered: bool | None = None
    target_url: str | None = None
    min_attempts: int | None = None
    max_attempts: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    response_codes: list[int] | None = None
    page: int = 1
    page_size: int = 20


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt (or of a short-circuit)."""
    webhook_event_id: str
    delivered: bool
    attempt_count: int
    response_code: int | None = None
    response_body: str | None = None
    failure_reason: str | None = None
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None


class RetryWebhookRequest(BaseModel):
    reset_attempts: bool = False


class BulkRetryRequest(BaseModel):
    tenant_id: str
    event_type: str | None = None
    older_than_hours: int | None = None


class RetryBatchResult(BaseModel):
    """Aggregate of one batch run. Partial failure is the normal case."""
    retried: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)

    def record(self, result: DeliveryResult) -> None:
        self.retried += 1
        if result.delivered:
            self.succeeded += 1
            return
        self.failed += 1
        if result.failure_reason:
            self.errors.append(f"Event {result.webhook_event_id}: {result.failure_reason}")

    def record_error(self, event_id: str, error: str) -> None:
        self.retried += 1
        self.failed += 1
        self.errors.append(f"Event {event_id}: {error}")


class FailureReasonCount(BaseModel):
    reason: str
    count: int


class DailyCount(BaseModel):
    date: date
    total: int
    delivered: int


class WebhookStats(BaseModel):
    """Aggregate delivery statistics for a tenant (or all tenants)."""
    tenant_id: str | None = None
    total_webhooks: int = 0
    delivered_webhooks: int = 0
    failed_webhooks: int = 0
    pending_webhooks: int = 0
    delivery_rate: float = 0.0
    average_attempts: float = 0.0
    by_event_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)


class WebhookAnalytics(BaseModel):
    """Stats plus timing, failure breakdown and a daily series."""
    tenant_id: str
    period: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    total_events: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    delivery_rate: float
    average_attempts: float
    average_delivery_seconds: float
    events_by_type: dict[str, int]
    top_failure_reasons: list[FailureReasonCount]
    daily: list[DailyCount]


class CleanupResult(BaseModel):
    deleted: int
    older_than_days: int
