"""
Structured logging configuration using structlog.

All logs are output as JSON. Every line carries the service name and
environment; delivery code binds event_id and tenant_id on top.
"""
import structlog
import logging
import sys

from app.config import settings


def resolve_level(level: int | str | None = None) -> int:
    """Map a level name (or None for LOG_LEVEL) to a logging constant; unknown names fall back to INFO."""
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def add_service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: int | str | None = None):
    """Configure structlog for JSON output with service and request context."""
    level = resolve_level(level)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


logger = configure_logging()


def get_logger(**context):
    """
    Logger with delivery context bound.

        log = get_logger(event_id=event.id, tenant_id=event.tenant_id)
        log.warning("webhook_delivery_failed", attempt=2, status_code=503)
    """
    return logger.bind(**context)
