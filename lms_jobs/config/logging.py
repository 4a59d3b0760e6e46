import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings


def setup_logging(settings: Settings | None = None, cache_loggers: bool = True) -> None:
    """
    Configure structured logging with structlog.

    Short-lived processes whose stdout may be swapped between runs (the CLI)
    pass cache_loggers=False so each log call writes to the current stream.
    """
    settings = settings or default_settings

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            # Job and worker context bound via contextvars
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            # Add caller information in development
            (
                structlog.processors.CallsiteParameterAdder(
                    parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
                )
                if settings.debug
                else structlog.processors.CallsiteParameterAdder(parameters=[])
            ),
        ]
        # JSON formatting for production, pretty printing for development
        + (
            [structlog.dev.ConsoleRenderer()]
            if settings.debug
            else [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        ),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_worker_context(worker_id: str, **context: Any) -> None:
    """Add worker-specific context to all log messages of the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)
