"""Shared test fixtures."""

from datetime import timedelta

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models.base import Base, utcnow
from app.models.webhook import WebhookEvent
from app.services.analytics_service import AnalyticsService
from app.services.backoff import BackoffSchedule
from app.services.retry_processor import RetryProcessor
from app.services.transport import WebhookTransport
from app.services.webhook_service import WebhookService


TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
TARGET_URL = "https://receiver.example.com/hooks"


class Receiver:
    """
    Scripted webhook receiver for httpx.MockTransport.

    Replies with the queued status codes in order; the last one repeats.
    """

    def __init__(self, *statuses: int, body: str = "ok"):
        self.statuses = list(statuses) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text=self.body)

    def transport(self) -> WebhookTransport:
        return WebhookTransport(transport=httpx.MockTransport(self))


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a test database session."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def receiver():
    return Receiver(200)


@pytest.fixture
def service(db_session, receiver):
    return WebhookService(db_session, transport=receiver.transport(), backoff=BackoffSchedule())


@pytest.fixture
def processor(service):
    return RetryProcessor(service)


@pytest.fixture
def analytics(db_session):
    return AnalyticsService(db_session)


@pytest.fixture
def make_event(db_session):
    """Insert an event directly, bypassing validation, for state-based tests."""

    async def _make(**overrides) -> WebhookEvent:
        now = utcnow()
        values = {
            "tenant_id": TENANT,
            "event_type": "booking.created",
            "target_url": TARGET_URL,
            "payload": {"booking_id": "b-1"},
            "max_attempts": 3,
            "attempt_count": 0,
            "delivered": False,
            "next_retry_at": now,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        event = WebhookEvent(**values)
        db_session.add(event)
        await db_session.commit()
        return event

    return _make


def days_ago(days: float):
    return utcnow() - timedelta(days=days)


@pytest.fixture
def app(db_engine, receiver):
    """Create a test application instance with in-memory DB and a mock receiver."""
    from app.database import get_db
    from app.main import create_app
    from app.routes.webhooks import get_transport

    _app = create_app()
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def _get_db():
        async with session_factory() as session:
            yield session

    _app.dependency_overrides[get_db] = _get_db
    _app.dependency_overrides[get_transport] = receiver.transport
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
