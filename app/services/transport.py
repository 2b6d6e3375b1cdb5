"""
Delivery transport.

Performs exactly one HTTP POST per call and classifies the outcome. The
response body is read incrementally and cut off at a fixed size so a
misbehaving receiver cannot exhaust memory.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings


@dataclass
class TransportResult:
    """Outcome of one POST. ``status_code`` is 0 when no response arrived."""
    status_code: int
    body: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def default_user_agent() -> str:
    return f"{settings.APP_NAME}-Webhook/1.0"


class WebhookTransport:
    """HTTP sender configured at construction."""

    def __init__(
        self,
        timeout: float | None = None,
        max_body_bytes: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self.max_body_bytes = max_body_bytes if max_body_bytes is not None else settings.WEBHOOK_MAX_RESPONSE_BYTES
        self.user_agent = user_agent or default_user_agent()
        self._transport = transport

    async def send(self, url: str, payload: Any) -> TransportResult:
        """POST ``payload`` as JSON to ``url``."""
        try:
            body = json.dumps(payload, default=str).encode("utf-8")
        except (TypeError, ValueError) as exc:
            return TransportResult(status_code=0, body="", error=f"failed to marshal payload: {exc}")

        try:
            # The overall deadline covers connect, upload and the capped body read.
            status_code, snippet = await asyncio.wait_for(self._post(url, body), timeout=self.timeout)
        except asyncio.TimeoutError:
            return TransportResult(
                status_code=0, body="", error=f"failed to send webhook: timed out after {self.timeout}s"
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return TransportResult(status_code=0, body="", error=f"failed to send webhook: {exc!r}")

        if not 200 <= status_code < 300:
            return TransportResult(
                status_code=status_code,
                body=snippet,
                error=f"webhook returned non-success status: {status_code}",
            )
        return TransportResult(status_code=status_code, body=snippet)

    async def _post(self, url: str, body: bytes) -> tuple[int, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "Accept-Encoding": "identity",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            async with client.stream("POST", url, content=body, headers=headers) as response:
                snippet = await self._read_capped(response)
                return response.status_code, snippet

    async def _read_capped(self, response: httpx.Response) -> str:
        """
        Read at most max_body_bytes of the body as it came off the wire.

        Raw bytes are counted before any content decoding, so a compressed
        body cannot expand past the cap. NUL characters are dropped since
        PostgreSQL text columns reject them.
        """
        chunks: list[bytes] = []
        remaining = self.max_body_bytes
        async for chunk in response.aiter_raw():
            if remaining <= 0:
                break
            piece = chunk[:remaining]
            chunks.append(piece)
            remaining -= len(piece)
        return b"".join(chunks).decode("utf-8", errors="replace").replace("\x00", "")
