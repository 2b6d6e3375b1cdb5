"""
Business event triggers.

A trigger turns a domain entity (booking, payment, user) into the webhook
payload envelope. Producers hand the trigger and the entity to
WebhookService.trigger_event and never build payloads themselves.
"""
import json
from collections.abc import Mapping
from typing import Any, Protocol

from app.exceptions import ValidationError
from app.models.base import utcnow
from app.models.webhook import WebhookEventType


class EventTrigger(Protocol):
    """Builds the payload for one business domain."""

    event_types: frozenset[str]

    def build_payload(self, event_type: str, entity: Any, tenant_id: str) -> dict[str, Any]:
        ...


def build_envelope(event_type: str, tenant_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Standard envelope shared by every trigger."""
    return {
        "event": event_type,
        "tenant_id": tenant_id,
        "timestamp": utcnow().isoformat() + "Z",
        # Stored as JSON, so dates and decimals become strings here.
        "data": json.loads(json.dumps(data, default=str)),
    }


def entity_to_dict(entity: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    """Pick ``fields`` from a mapping or an attribute-style object."""
    if isinstance(entity, Mapping):
        source = entity
    else:
        source = {name: getattr(entity, name) for name in fields if hasattr(entity, name)}
    return {name: source[name] for name in fields if name in source}


class _DomainTrigger:
    event_types: frozenset[str] = frozenset()
    fields: tuple[str, ...] = ()

    def build_payload(self, event_type: str, entity: Any, tenant_id: str) -> dict[str, Any]:
        event_type = getattr(event_type, "value", event_type)
        if event_type not in self.event_types:
            raise ValidationError(
                f"{type(self).__name__} does not handle event type '{event_type}'"
            )
        if entity is None:
            raise ValidationError("entity is required")
        return build_envelope(event_type, tenant_id, entity_to_dict(entity, self.fields))


class BookingEventTrigger(_DomainTrigger):
    event_types = frozenset({
        WebhookEventType.BOOKING_CREATED.value,
        WebhookEventType.BOOKING_UPDATED.value,
        WebhookEventType.BOOKING_CANCELLED.value,
    })
    fields = ("id", "customer_id", "artisan_id", "service_id", "status", "start_time", "end_time", "total_price")


class PaymentEventTrigger(_DomainTrigger):
    event_types = frozenset({WebhookEventType.PAYMENT_RECEIVED.value})
    fields = ("id", "booking_id", "amount", "currency", "status", "method", "paid_at")


class UserEventTrigger(_DomainTrigger):
    event_types = frozenset({WebhookEventType.USER_CREATED.value})
    fields = ("id", "email", "first_name", "last_name", "role", "created_at")
