"""
Health check endpoints.
"""
import time

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.exceptions import StoreError
from app.logging_config import get_logger
from app.services.webhook_service import WebhookService


router = APIRouter(tags=["health"])

log = get_logger(component="health")


@router.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@router.get("/health")
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    """
    Detailed health check.

    Reports each dependency with its status and response time. Returns 503
    when any check fails.
    """
    started = time.monotonic()
    check = {"status": "healthy"}
    try:
        await WebhookService(db).health_check()
    except StoreError as exc:
        log.error("health_check_failed", check="database", error=exc.message)
        check = {"status": "unhealthy", "error": exc.message}
    check["response_time_ms"] = round((time.monotonic() - started) * 1000, 2)

    overall = check["status"]
    if overall != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": overall,
        "version": settings.APP_VERSION,
        "checks": {"database": check},
    }
