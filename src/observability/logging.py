"""
Structured logging configuration using structlog.

JSON logs in production, colored console logs elsewhere. Context bound
with ``bind_context`` (the HTTP middleware binds ``request_id``) appears on
every line logged while serving that request, including lines from
modules that use plain ``logging.getLogger``.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings
from src.observability.tracing import add_trace_context


def setup_logging() -> None:
    """
    Configure structured logging for the application.

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Rule assignment upserted", rule_id="R1", strategy="MANUAL")
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.tracing_enabled:
        shared_processors.append(add_trace_context)

    if settings.is_production:
        renderer: Processor = structlog.processors.JSONRenderer()
        structlog_processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
        structlog_processors = shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

    structlog.configure(
        processors=structlog_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib records through the same renderer so %-style loggers
    # also carry the bound request context
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level))

    # Set log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger (defaults to the root logger name)."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    Args:
        **kwargs: Key-value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
