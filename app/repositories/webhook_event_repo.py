"""
Webhook event store.

All reads and writes of the webhook_events table go through this repository.
Every write commits immediately: the attempt counter in particular must be
durable before the delivery request is sent.

SECURITY: Tenant-facing queries MUST include a tenant_id filter.
"""
import functools
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, StoreError
from app.models.base import utcnow
from app.models.webhook import WebhookEvent, WebhookStatus


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class Page:
    """A page of events plus pagination bookkeeping."""
    items: list[WebhookEvent]
    page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        if self.total_items == 0:
            return 0
        return math.ceil(self.total_items / self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


@dataclass
class WebhookEventFilters:
    """Filter set for find_by_filters. Unset fields do not filter."""
    tenant_id: str | None = None
    event_types: list[str] = field(default_factory=list)
    delivered: bool | None = None
    target_url: str | None = None
    min_attempts: int | None = None
    max_attempts: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    response_codes: list[int] = field(default_factory=list)


def normalize_pagination(page: int | None, page_size: int | None) -> tuple[int, int]:
    """Clamp page/page_size to sane bounds."""
    page = page if page and page > 0 else 1
    if not page_size or page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def store_operation(message: str):
    """Translate SQLAlchemy failures into StoreError, rolling the session back."""
    def decorator(func_):
        @functools.wraps(func_)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func_(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                raise StoreError(f"{message}: {exc}") from exc
        return wrapper
    return decorator


class WebhookEventRepository:
    """Async SQLAlchemy store for webhook events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _write(self, stmt):
        # Rows are always re-read with populate_existing, so the identity map is left alone.
        return await self.db.execute(stmt, execution_options={"synchronize_session": False})

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    @store_operation("failed to create webhook event")
    async def create(self, event: WebhookEvent) -> WebhookEvent:
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    @store_operation("failed to get webhook event")
    async def get_by_id(self, event_id: str) -> WebhookEvent:
        """Load an event, always re-reading the row from the database."""
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        event = result.scalar_one_or_none()
        if event is None:
            raise NotFoundError("webhook event", event_id)
        return event

    @store_operation("store health check failed")
    async def ping(self) -> None:
        await self.db.execute(select(func.count()).select_from(WebhookEvent).limit(1))

    # ------------------------------------------------------------------
    # Delivery state transitions
    # ------------------------------------------------------------------

    @store_operation("failed to increment attempt count")
    async def increment_attempt_count(self, event_id: str) -> int | None:
        """
        Atomically bump attempt_count and commit.

        The update only applies while the event is undelivered and below
        max_attempts. Counting the final attempt clears next_retry_at in the
        same statement, so an attempt that never reports back still leaves
        the event exhausted. Returns the new count, or None when the row was
        not eligible (delivered, exhausted or missing).
        """
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.id == event_id,
                WebhookEvent.delivered.is_(False),
                WebhookEvent.attempt_count < WebhookEvent.max_attempts,
            )
            .values(
                attempt_count=WebhookEvent.attempt_count + 1,
                next_retry_at=case(
                    (WebhookEvent.attempt_count + 1 >= WebhookEvent.max_attempts, None),
                    else_=WebhookEvent.next_retry_at,
                ),
            )
            .returning(WebhookEvent.attempt_count)
        )
        result = await self._write(stmt)
        new_count = result.scalar_one_or_none()
        await self.db.commit()
        return new_count

    @store_operation("failed to mark webhook as delivered")
    async def mark_as_delivered(self, event_id: str, response_code: int, response_body: str) -> datetime:
        """Record the first successful delivery. Returns delivered_at."""
        now = utcnow()
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id, WebhookEvent.delivered.is_(False))
            .values(
                delivered=True,
                delivered_at=now,
                last_attempted_at=now,
                response_code=response_code,
                response_body=response_body,
                failure_reason=None,
                next_retry_at=None,
            )
        )
        result = await self._write(stmt)
        await self.db.commit()
        if result.rowcount == 0:
            # Another worker delivered it first; report the stored time.
            event = await self.get_by_id(event_id)
            return event.delivered_at
        return now

    @store_operation("failed to mark webhook as failed")
    async def mark_as_failed(
        self,
        event_id: str,
        response_code: int,
        failure_reason: str,
        response_body: str | None = None,
    ) -> None:
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id, WebhookEvent.delivered.is_(False))
            .values(
                last_attempted_at=utcnow(),
                response_code=response_code,
                response_body=response_body,
                failure_reason=failure_reason,
            )
        )
        await self._write(stmt)
        await self.db.commit()

    @store_operation("failed to set next retry time")
    async def set_next_retry_time(self, event_id: str, next_retry_at: datetime | None) -> None:
        """Schedule the next attempt, or clear the schedule with None."""
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id, WebhookEvent.delivered.is_(False))
            .values(next_retry_at=next_retry_at)
        )
        await self._write(stmt)
        await self.db.commit()

    @store_operation("failed to reset webhook for retry")
    async def reset_for_retry(self, event_id: str) -> bool:
        """Start a fresh attempt cycle, due immediately. Delivered events are never reset."""
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id, WebhookEvent.delivered.is_(False))
            .values(attempt_count=0, failure_reason=None, next_retry_at=utcnow())
        )
        result = await self._write(stmt)
        await self.db.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _paginate(self, stmt, page: int | None, page_size: int | None, order_by) -> Page:
        page, page_size = normalize_pagination(page, page_size)
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar_one()
        rows = await self.db.execute(
            stmt.order_by(*order_by)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .execution_options(populate_existing=True)
        )
        return Page(items=list(rows.scalars().all()), page=page, page_size=page_size, total_items=total)

    @staticmethod
    def _apply_filters(stmt, filters: WebhookEventFilters):
        if filters.tenant_id:
            stmt = stmt.where(WebhookEvent.tenant_id == filters.tenant_id)
        if filters.event_types:
            stmt = stmt.where(WebhookEvent.event_type.in_(filters.event_types))
        if filters.delivered is not None:
            stmt = stmt.where(WebhookEvent.delivered.is_(filters.delivered))
        if filters.target_url:
            stmt = stmt.where(WebhookEvent.target_url == filters.target_url)
        if filters.min_attempts is not None:
            stmt = stmt.where(WebhookEvent.attempt_count >= filters.min_attempts)
        if filters.max_attempts is not None:
            stmt = stmt.where(WebhookEvent.attempt_count <= filters.max_attempts)
        if filters.created_from is not None:
            stmt = stmt.where(WebhookEvent.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(WebhookEvent.created_at <= filters.created_to)
        if filters.response_codes:
            stmt = stmt.where(WebhookEvent.response_code.in_(filters.response_codes))
        return stmt

    @store_operation("failed to find webhook events")
    async def find_by_filters(
        self,
        filters: WebhookEventFilters,
        page: int | None = 1,
        page_size: int | None = DEFAULT_PAGE_SIZE,
        oldest_first: bool = False,
    ) -> Page:
        stmt = self._apply_filters(select(WebhookEvent), filters)
        order = WebhookEvent.created_at.asc() if oldest_first else WebhookEvent.created_at.desc()
        return await self._paginate(stmt, page, page_size, [order, WebhookEvent.id])

    @store_operation("failed to find pending retries")
    async def get_pending_retries(self, limit: int, tenant_id: str | None = None) -> list[WebhookEvent]:
        """Undelivered events with attempts left whose retry time has elapsed, oldest first."""
        now = utcnow()
        stmt = select(WebhookEvent).where(
            WebhookEvent.delivered.is_(False),
            WebhookEvent.attempt_count < WebhookEvent.max_attempts,
            or_(WebhookEvent.next_retry_at.is_(None), WebhookEvent.next_retry_at <= now),
        )
        if tenant_id:
            stmt = stmt.where(WebhookEvent.tenant_id == tenant_id)
        stmt = (
            stmt.order_by(WebhookEvent.created_at.asc(), WebhookEvent.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @store_operation("failed to find failed webhooks")
    async def get_failed_webhooks(
        self,
        tenant_id: str,
        page: int | None = 1,
        page_size: int | None = DEFAULT_PAGE_SIZE,
        retryable_only: bool = False,
    ) -> Page:
        """
        Failed events, oldest first.

        By default these are exhausted events, matching the failed count in
        the stats. With ``retryable_only`` they are events whose last attempt
        failed but which still have attempts left.
        """
        stmt = select(WebhookEvent).where(
            WebhookEvent.tenant_id == tenant_id,
            WebhookEvent.delivered.is_(False),
        )
        if retryable_only:
            stmt = stmt.where(
                WebhookEvent.attempt_count > 0,
                WebhookEvent.attempt_count < WebhookEvent.max_attempts,
                WebhookEvent.failure_reason.is_not(None),
            )
        else:
            stmt = stmt.where(WebhookEvent.attempt_count >= WebhookEvent.max_attempts)
        return await self._paginate(stmt, page, page_size, [WebhookEvent.created_at.asc(), WebhookEvent.id])

    @store_operation("failed to find delivered webhooks")
    async def get_delivered_webhooks(
        self, tenant_id: str, page: int | None = 1, page_size: int | None = DEFAULT_PAGE_SIZE
    ) -> Page:
        stmt = select(WebhookEvent).where(
            WebhookEvent.tenant_id == tenant_id,
            WebhookEvent.delivered.is_(True),
        )
        return await self._paginate(stmt, page, page_size, [WebhookEvent.delivered_at.desc(), WebhookEvent.id])

    @store_operation("failed to find recent webhooks")
    async def get_recent_webhooks(
        self, tenant_id: str, hours: int, page: int | None = 1, page_size: int | None = DEFAULT_PAGE_SIZE
    ) -> Page:
        since = utcnow() - timedelta(hours=hours)
        stmt = select(WebhookEvent).where(
            WebhookEvent.tenant_id == tenant_id,
            WebhookEvent.created_at >= since,
        )
        return await self._paginate(stmt, page, page_size, [WebhookEvent.created_at.desc(), WebhookEvent.id])

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @staticmethod
    def _window(stmt, tenant_id: str | None, start_date: datetime | None, end_date: datetime | None):
        if tenant_id:
            stmt = stmt.where(WebhookEvent.tenant_id == tenant_id)
        if start_date is not None:
            stmt = stmt.where(WebhookEvent.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(WebhookEvent.created_at <= end_date)
        return stmt

    @store_operation("failed to aggregate webhook stats")
    async def get_webhook_stats(
        self,
        tenant_id: str | None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        """Counts by derived status, average attempts and per-type totals."""
        exhausted = and_(
            WebhookEvent.delivered.is_(False),
            WebhookEvent.attempt_count >= WebhookEvent.max_attempts,
        )
        totals_stmt = self._window(
            select(
                func.count(WebhookEvent.id),
                func.coalesce(func.sum(case((WebhookEvent.delivered.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((exhausted, 1), else_=0)), 0),
                func.coalesce(func.avg(WebhookEvent.attempt_count), 0),
            ),
            tenant_id, start_date, end_date,
        )
        total, delivered, failed, avg_attempts = (await self.db.execute(totals_stmt)).one()

        type_stmt = self._window(
            select(WebhookEvent.event_type, func.count(WebhookEvent.id)).group_by(WebhookEvent.event_type),
            tenant_id, start_date, end_date,
        )
        by_event_type = {row[0]: row[1] for row in (await self.db.execute(type_stmt)).all()}

        total = int(total or 0)
        delivered = int(delivered or 0)
        failed = int(failed or 0)
        pending = total - delivered - failed
        return {
            "total_webhooks": total,
            "delivered_webhooks": delivered,
            "failed_webhooks": failed,
            "pending_webhooks": pending,
            "delivery_rate": (delivered / total * 100) if total else 0.0,
            "average_attempts": float(avg_attempts or 0),
            "by_event_type": by_event_type,
            "by_status": {
                WebhookStatus.DELIVERED.value: delivered,
                WebhookStatus.FAILED.value: failed,
                WebhookStatus.PENDING.value: pending,
            },
        }

    @store_operation("failed to aggregate failure reasons")
    async def get_failure_reasons(self, tenant_id: str, limit: int) -> list[tuple[str, int]]:
        count = func.count(WebhookEvent.id).label("count")
        stmt = (
            select(WebhookEvent.failure_reason, count)
            .where(
                WebhookEvent.tenant_id == tenant_id,
                WebhookEvent.delivered.is_(False),
                WebhookEvent.failure_reason.is_not(None),
                WebhookEvent.failure_reason != "",
            )
            .group_by(WebhookEvent.failure_reason)
            .order_by(count.desc(), WebhookEvent.failure_reason)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [(reason, int(n)) for reason, n in result.all()]

    @store_operation("failed to calculate average delivery time")
    async def get_average_delivery_time(
        self,
        tenant_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> timedelta:
        """Mean time from creation to first successful delivery."""
        stmt = self._window(
            select(WebhookEvent.created_at, WebhookEvent.delivered_at).where(
                WebhookEvent.delivered.is_(True),
                WebhookEvent.delivered_at.is_not(None),
            ),
            tenant_id, start_date, end_date,
        )
        rows = (await self.db.execute(stmt)).all()
        if not rows:
            return timedelta(0)
        total_seconds = sum((delivered_at - created_at).total_seconds() for created_at, delivered_at in rows)
        return timedelta(seconds=total_seconds / len(rows))

    @store_operation("failed to aggregate daily counts")
    async def get_daily_counts(
        self,
        tenant_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[tuple[date, int, int]]:
        day = func.date(WebhookEvent.created_at).label("day")
        stmt = self._window(
            select(
                day,
                func.count(WebhookEvent.id),
                func.coalesce(func.sum(case((WebhookEvent.delivered.is_(True), 1), else_=0)), 0),
            ).group_by(day).order_by(day),
            tenant_id, start_date, end_date,
        )
        result = await self.db.execute(stmt)
        series = []
        for raw_day, total, delivered in result.all():
            if isinstance(raw_day, str):
                raw_day = date.fromisoformat(raw_day)
            series.append((raw_day, int(total), int(delivered)))
        return series

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    @store_operation("failed to delete old webhooks")
    async def delete_old_webhooks(self, older_than: datetime) -> int:
        """Delete terminal (delivered or exhausted) events created before the cutoff."""
        stmt = delete(WebhookEvent).where(
            WebhookEvent.created_at < older_than,
            or_(
                WebhookEvent.delivered.is_(True),
                WebhookEvent.attempt_count >= WebhookEvent.max_attempts,
            ),
        )
        result = await self._write(stmt)
        await self.db.commit()
        return result.rowcount

    @store_operation("failed to delete delivered webhooks")
    async def delete_delivered_webhooks(self, older_than: datetime) -> int:
        stmt = delete(WebhookEvent).where(
            WebhookEvent.delivered.is_(True),
            WebhookEvent.delivered_at < older_than,
        )
        result = await self._write(stmt)
        await self.db.commit()
        return result.rowcount

    @store_operation("failed to purge failed webhooks")
    async def purge_failed_webhooks(self, max_attempts: int, older_than: datetime) -> int:
        """Delete exhausted events with at least max_attempts attempts, created before the cutoff."""
        stmt = delete(WebhookEvent).where(
            WebhookEvent.delivered.is_(False),
            WebhookEvent.attempt_count >= max_attempts,
            WebhookEvent.attempt_count >= WebhookEvent.max_attempts,
            WebhookEvent.created_at < older_than,
        )
        result = await self._write(stmt)
        await self.db.commit()
        return result.rowcount
