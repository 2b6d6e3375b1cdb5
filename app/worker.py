"""
ARQ Background Worker for HookRelay.

Runs the retry scheduler and daily cleanup as cron jobs, and delivers
individually enqueued events.

Start with: arq app.worker.WorkerSettings
"""
import asyncio

from arq import cron
from arq.connections import RedisSettings
from redis.exceptions import RedisError

from app.config import settings
from app.database import AsyncSessionLocal
from app.logging_config import get_logger
from app.sentry_config import capture_exception, configure_sentry
from app.services.analytics_service import AnalyticsService
from app.services.retry_processor import RetryProcessor
from app.services.webhook_service import WebhookService


log = get_logger(component="worker")


async def process_pending_webhooks_task(ctx: dict) -> dict:
    """Deliver every event whose retry time has elapsed."""
    async with AsyncSessionLocal() as db:
        try:
            result = await RetryProcessor(WebhookService(db)).process_pending_webhooks()
        except Exception:
            log.exception("process_pending_webhooks_failed")
            capture_exception()
            raise
    return result.model_dump()


async def cleanup_webhooks_task(ctx: dict) -> dict:
    """Daily retention pass: delivered, exhausted, then anything terminal and old."""
    async with AsyncSessionLocal() as db:
        analytics = AnalyticsService(db)
        try:
            delivered = await analytics.cleanup_delivered_webhooks()
            failed = await analytics.purge_failed_webhooks()
            old = await analytics.cleanup_old_webhooks()
        except Exception:
            log.exception("cleanup_webhooks_failed")
            capture_exception()
            raise

    log.info(
        "cleanup_webhooks_completed",
        delivered=delivered.deleted,
        failed=failed.deleted,
        old=old.deleted,
    )
    return {"delivered": delivered.deleted, "failed": failed.deleted, "old": old.deleted}


async def deliver_webhook_task(ctx: dict, event_id: str) -> dict:
    """Make one delivery attempt for an event."""
    async with AsyncSessionLocal() as db:
        try:
            result = await WebhookService(db).deliver_webhook(event_id)
        except Exception:
            log.exception("deliver_webhook_failed", event_id=event_id)
            capture_exception()
            raise
    return result.model_dump(mode="json")


async def enqueue_delivery(event_id: str) -> bool:
    """Enqueue an immediate delivery attempt. The scheduler retries it anyway if this fails."""
    from arq import create_pool

    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        try:
            await redis.enqueue_job("deliver_webhook_task", event_id)
        finally:
            await redis.close()
    except (RedisError, OSError) as e:
        log.warning("enqueue_delivery_failed", event_id=event_id, error=str(e))
        return False

    log.info("delivery_enqueued", event_id=event_id)
    return True


async def startup(ctx: dict) -> None:
    configure_sentry()
    log.info("worker_started", redis=settings.REDIS_URL)


async def main():
    """Run the worker using arq cli."""
    print("Use: arq app.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq app.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    # Delivery retries are tracked on the event itself.
    max_tries = 1
    functions = [deliver_webhook_task]
    cron_jobs = [
        cron(process_pending_webhooks_task, second=0, unique=True),
        cron(cleanup_webhooks_task, hour=3, minute=0, second=0, unique=True),
    ]
    on_startup = startup


if __name__ == "__main__":
    asyncio.run(main())
