"""
HookRelay - Webhook delivery engine

FastAPI application entry point.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Import observability modules
from app.config import settings
from app.exceptions import WebhookError
from app.logging_config import configure_logging, get_logger
from app.sentry_config import configure_sentry
from app.middleware.logging import LoggingMiddleware
from app.routes.metrics import router as metrics_router

# Import route modules
from app.routes.health import router as health_router
from app.routes.webhooks import router as webhooks_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="api")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Multi-tenant webhook delivery engine with retries, backoff and analytics",
    )

    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(WebhookError)
    async def webhook_error_handler(request: Request, exc: WebhookError):
        if exc.status_code >= 500:
            log.error("request_error", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    # Metrics first so it's always available
    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
