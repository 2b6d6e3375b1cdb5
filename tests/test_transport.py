"""Tests for the HTTP delivery transport."""

import asyncio
import gzip
import json

import httpx

from app.services.transport import WebhookTransport, default_user_agent


URL = "https://receiver.example.com/hooks"


def make_transport(handler, **kwargs) -> WebhookTransport:
    return WebhookTransport(transport=httpx.MockTransport(handler), **kwargs)


async def test_posts_json_with_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="thanks")

    result = await make_transport(handler).send(URL, {"event": "booking.created", "n": 1})

    assert result.ok
    assert result.status_code == 200
    assert result.body == "thanks"
    assert result.error is None

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == URL
    assert request.headers["content-type"] == "application/json"
    assert request.headers["user-agent"] == default_user_agent()
    assert request.headers["accept-encoding"] == "identity"
    assert default_user_agent().endswith("-Webhook/1.0")
    assert json.loads(request.content) == {"event": "booking.created", "n": 1}


async def test_any_2xx_is_success():
    result = await make_transport(lambda request: httpx.Response(204)).send(URL, {})
    assert result.ok
    assert result.status_code == 204
    assert result.body == ""


async def test_non_2xx_is_failure_with_status_and_body():
    result = await make_transport(lambda request: httpx.Response(503, text="down")).send(URL, {})

    assert not result.ok
    assert result.status_code == 503
    assert result.body == "down"
    assert result.error == "webhook returned non-success status: 503"


async def test_redirect_is_not_followed_and_counts_as_failure():
    handler = lambda request: httpx.Response(302, headers={"Location": "https://elsewhere.example.com"})
    result = await make_transport(handler).send(URL, {})

    assert not result.ok
    assert result.status_code == 302


async def test_4xx_is_failure():
    result = await make_transport(lambda request: httpx.Response(404)).send(URL, {})
    assert result.error == "webhook returned non-success status: 404"


async def test_connection_error_has_status_zero():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_transport(handler).send(URL, {})

    assert not result.ok
    assert result.status_code == 0
    assert result.body == ""
    assert result.error.startswith("failed to send webhook")
    assert "connection refused" in result.error


async def test_timeout_has_status_zero():
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    result = await make_transport(handler, timeout=0.05).send(URL, {})

    assert not result.ok
    assert result.status_code == 0
    assert "timed out" in result.error


async def test_response_body_is_capped():
    big = b"x" * (2 * 1024 * 1024)
    result = await make_transport(lambda request: httpx.Response(200, content=big)).send(URL, {})

    assert result.ok
    assert len(result.body) == 1024 * 1024


async def test_custom_body_cap():
    result = await make_transport(
        lambda request: httpx.Response(500, content=b"abcdefghij"), max_body_bytes=4
    ).send(URL, {})
    assert result.body == "abcd"


async def test_invalid_body_bytes_are_replaced():
    result = await make_transport(lambda request: httpx.Response(200, content=b"ok\xff")).send(URL, {})
    assert result.body == "ok�"


async def test_custom_user_agent():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    await make_transport(handler, user_agent="Acme-Webhook/2.0").send(URL, {})
    assert seen[0].headers["user-agent"] == "Acme-Webhook/2.0"



async def test_compressed_body_is_capped_before_decoding():
    compressed = gzip.compress(b"0" * (8 * 1024 * 1024))
    assert len(compressed) > 64

    def handler(request):
        return httpx.Response(200, content=compressed, headers={"Content-Encoding": "gzip"})

    result = await make_transport(handler, max_body_bytes=64).send(URL, {})

    assert result.ok
    # The wire bytes are kept as-is (gzip magic first), never the inflated zeros.
    assert result.body.startswith("\x1f")
    assert "0" * 64 not in result.body
    assert len(result.body) <= 64


async def test_nul_bytes_are_dropped_from_body():
    result = await make_transport(lambda request: httpx.Response(200, content=b"ok\x00\x00done")).send(URL, {})

    assert result.ok
    assert result.body == "okdone"
