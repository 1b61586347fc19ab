"""Logging configuration for the kicd relay."""

import logging
import sys

import structlog

from kicd.config import get_settings

# Client libraries that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "kubernetes_asyncio")


def setup_logging() -> None:
    """Configure structured logging."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.is_development:
        renderer: structlog.typing.Processor = structlog.dev.ConsoleRenderer(colors=True)
        exc_processors: list[structlog.typing.Processor] = [structlog.dev.set_exc_info]
    else:
        renderer = structlog.processors.JSONRenderer()
        exc_processors = [structlog.dev.set_exc_info, structlog.processors.format_exc_info]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            *exc_processors,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard library logging for aiohttp and kubernetes_asyncio
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(**values: str | None) -> None:
    """Start a fresh log context for one webhook request.

    Background rollouts started from the request inherit the context, so
    their log lines carry the same fields.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
