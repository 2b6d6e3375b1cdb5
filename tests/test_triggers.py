"""Tests for business event triggers."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest

from app.exceptions import ValidationError
from app.services.triggers import (
    BookingEventTrigger,
    PaymentEventTrigger,
    UserEventTrigger,
    build_envelope,
)


@dataclass
class Payment:
    id: str
    booking_id: str
    amount: Decimal
    currency: str
    status: str
    paid_at: datetime


def test_envelope_shape():
    envelope = build_envelope("user.created", "t-1", {"id": "u-1"})

    assert set(envelope) == {"event", "tenant_id", "timestamp", "data"}
    assert envelope["event"] == "user.created"
    assert envelope["tenant_id"] == "t-1"
    assert envelope["timestamp"].endswith("Z")
    assert envelope["data"] == {"id": "u-1"}


def test_booking_trigger_picks_known_fields():
    payload = BookingEventTrigger().build_payload(
        "booking.cancelled", {"id": "b-1", "status": "cancelled", "secret": "x"}, "t-1"
    )
    assert payload["data"] == {"id": "b-1", "status": "cancelled"}


def test_payment_trigger_reads_attributes_and_stringifies_values():
    payment = Payment("p-1", "b-1", Decimal("19.99"), "EUR", "paid", datetime(2026, 5, 1, 10, 30))

    payload = PaymentEventTrigger().build_payload("payment.received", payment, "t-1")

    assert payload["data"] == {
        "id": "p-1",
        "booking_id": "b-1",
        "amount": "19.99",
        "currency": "EUR",
        "status": "paid",
        "paid_at": "2026-05-01 10:30:00",
    }


def test_user_trigger():
    payload = UserEventTrigger().build_payload("user.created", {"id": "u-1", "email": "a@example.com"}, "t-1")
    assert payload["data"] == {"id": "u-1", "email": "a@example.com"}


@pytest.mark.parametrize(
    "trigger,event_type",
    [
        (BookingEventTrigger(), "payment.received"),
        (PaymentEventTrigger(), "booking.created"),
        (UserEventTrigger(), "review.created"),
    ],
)
def test_trigger_rejects_foreign_event_type(trigger, event_type):
    with pytest.raises(ValidationError):
        trigger.build_payload(event_type, {"id": "x"}, "t-1")


def test_trigger_rejects_missing_entity():
    with pytest.raises(ValidationError):
        BookingEventTrigger().build_payload("booking.created", None, "t-1")
