"""Tests for batch retry processing."""

from datetime import timedelta

from app.exceptions import StoreError
from app.models.base import utcnow

from conftest import OTHER_TENANT, TENANT


def past(minutes=5):
    return utcnow() - timedelta(minutes=minutes)


def future(minutes=30):
    return utcnow() + timedelta(minutes=minutes)


async def test_process_pending_delivers_due_events(processor, receiver, make_event, service):
    due = await make_event()
    retry_due = await make_event(attempt_count=1, failure_reason="boom", next_retry_at=past())
    not_yet = await make_event(attempt_count=1, failure_reason="boom", next_retry_at=future())
    exhausted = await make_event(attempt_count=3, failure_reason="boom", next_retry_at=None)
    delivered = await make_event(attempt_count=1, delivered=True, delivered_at=past(), next_retry_at=None)

    result = await processor.process_pending_webhooks()

    assert result.retried == 2
    assert result.succeeded == 2
    assert result.failed == 0
    assert len(receiver.requests) == 2

    for event_id in (due.id, retry_due.id):
        assert (await service.repo.get_by_id(event_id)).delivered
    for event_id in (not_yet.id, exhausted.id):
        assert not (await service.repo.get_by_id(event_id)).delivered
    assert (await service.repo.get_by_id(delivered.id)).attempt_count == 1


async def test_process_pending_respects_batch_size(processor, make_event):
    for _ in range(4):
        await make_event()

    result = await processor.process_pending_webhooks(batch_size=3)

    assert result.retried == 3


async def test_process_pending_with_nothing_due(processor, receiver):
    result = await processor.process_pending_webhooks()

    assert result.retried == 0
    assert result.errors == []
    assert receiver.requests == []


async def test_process_pending_records_failures(processor, receiver, make_event, service):
    receiver.statuses = [500]
    event = await make_event()

    result = await processor.process_pending_webhooks()

    assert result.retried == 1
    assert result.failed == 1
    assert result.errors == [f"Event {event.id}: webhook returned non-success status: 500"]

    stored = await service.repo.get_by_id(event.id)
    assert stored.attempt_count == 1
    assert stored.next_retry_at > utcnow()


async def test_bulk_retry_skips_exhausted_events(processor, receiver, make_event):
    for _ in range(3):
        await make_event(attempt_count=1, failure_reason="boom", next_retry_at=past())
    for _ in range(2):
        await make_event(attempt_count=3, failure_reason="boom", next_retry_at=None)

    result = await processor.bulk_retry_webhooks(TENANT)

    assert result.retried == 3
    assert result.succeeded == 3
    assert len(receiver.requests) == 3


async def test_bulk_retry_skips_events_not_yet_due(processor, make_event):
    await make_event(attempt_count=1, failure_reason="boom", next_retry_at=future())

    result = await processor.bulk_retry_webhooks(TENANT)

    assert result.retried == 0


async def test_bulk_retry_ignores_never_attempted_events(processor, make_event):
    await make_event()

    result = await processor.bulk_retry_webhooks(TENANT)

    assert result.retried == 0


async def test_bulk_retry_filters_type_age_and_tenant(processor, service, make_event):
    old = utcnow() - timedelta(hours=5)
    match_id = (await make_event(
        attempt_count=1, failure_reason="boom", next_retry_at=past(), event_type="payment.received", created_at=old
    )).id
    await make_event(attempt_count=1, failure_reason="boom", next_retry_at=past(), event_type="payment.received")
    await make_event(attempt_count=1, failure_reason="boom", next_retry_at=past(), created_at=old)
    await make_event(
        tenant_id=OTHER_TENANT,
        attempt_count=1,
        failure_reason="boom",
        next_retry_at=past(),
        event_type="payment.received",
        created_at=old,
    )

    result = await processor.bulk_retry_webhooks(TENANT, event_type="payment.received", older_than_hours=2)

    assert result.retried == 1
    assert result.succeeded == 1
    assert result.errors == []
    assert (await service.repo.get_by_id(match_id)).delivered


async def test_retry_failed_ignores_schedule(processor, receiver, make_event):
    await make_event(attempt_count=1, failure_reason="boom", next_retry_at=future())
    await make_event(attempt_count=2, failure_reason="boom", next_retry_at=future())
    await make_event(attempt_count=3, failure_reason="boom", next_retry_at=None)
    await make_event()

    result = await processor.retry_failed_webhooks(TENANT)

    assert result.retried == 2
    assert result.succeeded == 2
    assert len(receiver.requests) == 2


async def test_retry_failed_honours_limit(processor, make_event):
    for _ in range(4):
        await make_event(attempt_count=1, failure_reason="boom")

    result = await processor.retry_failed_webhooks(TENANT, limit=2)

    assert result.retried == 2


async def test_retry_failed_is_tenant_scoped(processor, make_event):
    await make_event(tenant_id=OTHER_TENANT, attempt_count=1, failure_reason="boom")

    result = await processor.retry_failed_webhooks(TENANT)

    assert result.retried == 0


async def test_error_on_one_event_does_not_stop_batch(processor, service, make_event, monkeypatch):
    broken_id = (await make_event()).id
    healthy_id = (await make_event()).id

    deliver = service.deliver_webhook

    async def flaky_deliver(event_id):
        if event_id == broken_id:
            raise StoreError("failed to increment attempt count: database is locked")
        return await deliver(event_id)

    monkeypatch.setattr(service, "deliver_webhook", flaky_deliver)

    result = await processor.process_pending_webhooks()

    assert result.retried == 2
    assert result.succeeded == 1
    assert result.failed == 1
    assert result.errors == [f"Event {broken_id}: failed to increment attempt count: database is locked"]
    assert (await service.repo.get_by_id(healthy_id)).delivered
