import logging

import structlog

from app.config import Settings


def configure_logging(settings: Settings) -> None:
    """Route structlog through a level filter and pick a renderer per environment."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.ENVIRONMENT == "development":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def mask_visitor(visitor_id: str) -> str:
    # Partial ids only; full identifiers never reach the log stream
    return visitor_id[:8] + "..."
