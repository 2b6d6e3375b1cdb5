"""Tests for the operator HTTP surface."""

from app.routes import webhooks as webhook_routes

from conftest import TARGET_URL, TENANT


async def create(client, **overrides):
    body = {
        "tenant_id": TENANT,
        "event_type": "booking.created",
        "target_url": TARGET_URL,
        "payload": {"booking_id": "b-1"},
    }
    body.update(overrides)
    return await client.post("/api/webhooks", json=body)


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


async def test_health_reports_database_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "healthy"
    assert "response_time_ms" in body["checks"]["database"]


async def test_metrics_endpoint(client):
    await client.get("/")
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


async def test_create_and_get(client):
    response = await create(client)

    assert response.status_code == 201
    event = response.json()
    assert event["status"] == "pending"
    assert event["attempt_count"] == 0

    fetched = await client.get(f"/api/webhooks/{event['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == event["id"]


async def test_create_validation_error_shape(client):
    response = await create(client, target_url="")

    assert response.status_code == 400
    assert response.json() == {"error": {"code": "VALIDATION_ERROR", "message": "target_url is required"}}


async def test_unknown_event_is_404(client):
    response = await client.get("/api/webhooks/missing")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


async def test_deliver_and_retry(client, receiver):
    receiver.statuses = [500, 200]
    event_id = (await create(client)).json()["id"]

    first = await client.post(f"/api/webhooks/{event_id}/deliver")
    assert first.status_code == 200
    assert first.json()["delivered"] is False
    assert first.json()["response_code"] == 500

    second = await client.post(f"/api/webhooks/{event_id}/retry", json={"reset_attempts": False})
    assert second.json()["delivered"] is True
    assert second.json()["attempt_count"] == 2


async def test_list_events(client):
    await create(client)
    await create(client, tenant_id="someone-else")

    response = await client.post("/api/webhooks/list", json={"tenant_id": TENANT})

    assert response.status_code == 200
    assert response.json()["total_items"] == 1


async def test_process_pending_then_stats(client, receiver):
    await create(client)
    await create(client)

    batch = await client.post("/api/webhooks/process-pending")
    assert batch.json() == {"retried": 2, "succeeded": 2, "failed": 0, "errors": []}

    stats = await client.get("/api/webhooks/stats", params={"tenant_id": TENANT})
    assert stats.json()["delivered_webhooks"] == 2
    assert stats.json()["delivery_rate"] == 100.0

    analytics = await client.get("/api/webhooks/analytics", params={"tenant_id": TENANT})
    assert analytics.json()["period"] == "all_time"

    delivered = await client.get("/api/webhooks/delivered", params={"tenant_id": TENANT})
    assert delivered.json()["total_items"] == 2


async def test_retry_failed_and_failure_views(client, receiver):
    receiver.statuses = [500]
    exhausted_id = (await create(client, max_attempts=1)).json()["id"]
    retryable_id = (await create(client)).json()["id"]
    await client.post(f"/api/webhooks/{exhausted_id}/deliver")
    await client.post(f"/api/webhooks/{retryable_id}/deliver")

    failed = await client.get("/api/webhooks/failed", params={"tenant_id": TENANT})
    assert failed.json()["total_items"] == 1
    assert failed.json()["events"][0]["id"] == exhausted_id

    reasons = await client.get("/api/webhooks/failure-reasons", params={"tenant_id": TENANT})
    assert reasons.json() == [{"reason": "webhook returned non-success status: 500", "count": 2}]

    receiver.statuses = [200]
    batch = await client.post(f"/api/webhooks/tenant/{TENANT}/retry-failed")
    assert batch.json()["retried"] == 1
    assert batch.json()["succeeded"] == 1


async def test_bulk_retry_endpoint(client):
    response = await client.post("/api/webhooks/bulk-retry", json={"tenant_id": TENANT})

    assert response.status_code == 200
    assert response.json()["retried"] == 0


async def test_cleanup_endpoints(client):
    old = await client.post("/api/webhooks/cleanup/old")
    delivered = await client.post("/api/webhooks/cleanup/delivered", params={"older_than_days": 10})
    purged = await client.post("/api/webhooks/purge-failed")

    assert old.json() == {"deleted": 0, "older_than_days": 90}
    assert delivered.json() == {"deleted": 0, "older_than_days": 10}
    assert purged.json() == {"deleted": 0, "older_than_days": 7}


async def test_pending_recent_and_service_metrics(client):
    await create(client)

    pending = await client.get("/api/webhooks/pending", params={"tenant_id": TENANT})
    recent = await client.get("/api/webhooks/recent", params={"tenant_id": TENANT})
    metrics = await client.get("/api/webhooks/service-metrics")

    assert len(pending.json()) == 1
    assert recent.json()["total_items"] == 1
    assert metrics.json()["total_webhooks"] == 1


async def test_create_with_deliver_now_enqueues_delivery(client, monkeypatch):
    queued = []

    async def fake_enqueue(event_id):
        queued.append(event_id)
        return True

    monkeypatch.setattr(webhook_routes, "enqueue_delivery", fake_enqueue)

    deferred = await create(client)
    immediate = await client.post(
        "/api/webhooks",
        params={"deliver_now": "true"},
        json={"tenant_id": TENANT, "event_type": "user.created", "target_url": TARGET_URL, "payload": {}},
    )

    assert deferred.status_code == 201
    assert immediate.status_code == 201
    assert queued == [immediate.json()["id"]]
