"""
Webhook Event Model

Durable record of one outbound business event and its delivery state.

SECURITY: All tenant-facing queries MUST include a tenant_id filter.
"""
import enum
import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, TimestampMixin, utcnow


class WebhookEventType(str, enum.Enum):
    """Known business event categories."""
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CANCELLED = "booking.cancelled"
    PAYMENT_RECEIVED = "payment.received"
    REVIEW_CREATED = "review.created"
    USER_CREATED = "user.created"


class WebhookStatus(str, enum.Enum):
    """Derived delivery status."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class WebhookEvent(Base, TimestampMixin):
    """
    Webhook event with its delivery state machine.

    An event is pending until it is either delivered (2xx response) or
    exhausted (attempt_count reached max_attempts without success).
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        CheckConstraint("attempt_count <= max_attempts", name="ck_webhook_events_attempts_within_limit"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    last_attempted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def should_retry(self) -> bool:
        """True while the event is undelivered and has attempts left."""
        return not self.delivered and self.attempt_count < self.max_attempts

    def can_retry_now(self, now: datetime | None = None) -> bool:
        """True when the event may be attempted at ``now``."""
        if not self.should_retry():
            return False
        if self.next_retry_at is None:
            return True
        return (now or utcnow()) >= self.next_retry_at

    @property
    def is_exhausted(self) -> bool:
        return not self.delivered and self.attempt_count >= self.max_attempts

    @property
    def status(self) -> WebhookStatus:
        if self.delivered:
            return WebhookStatus.DELIVERED
        if self.is_exhausted:
            return WebhookStatus.FAILED
        return WebhookStatus.PENDING

    def __repr__(self):
        return (
            f"<WebhookEvent(id={self.id}, type={self.event_type}, "
            f"attempts={self.attempt_count}/{self.max_attempts}, delivered={self.delivered})>"
        )
