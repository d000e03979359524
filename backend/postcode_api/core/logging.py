"""
Structured logging configuration with JSON formatting and request correlation.

This module provides centralized logging configuration with structured JSON
output, correlation ID and client ID enrichment, performance logging and a
guarded emit helper so that a failing log sink never affects a response.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from postcode_api.core.config import Settings

# Context variables for request correlation
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
client_id_ctx: ContextVar[Optional[str]] = ContextVar("client_id", default=None)

_application_name = "Postcode API"


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add correlation ID from context to log event.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with correlation_id
    """
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_client_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add the authenticated client identity from context to log event.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with client_id
    """
    client_id = client_id_ctx.get()
    if client_id:
        event_dict.setdefault("client_id", client_id)
    return event_dict


def add_application(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every record with the application name."""
    event_dict["application"] = _application_name
    return event_dict


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to log event."""
    from datetime import datetime, timezone

    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(settings: Settings) -> None:
    """
    Configure structured logging.

    Sets up structlog with the enrichment processors, a console renderer for
    development and JSON everywhere else, and routes output through the
    standard library root logger at the configured level.

    Args:
        settings: Application settings
    """
    global _application_name
    _application_name = settings.app_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_application,
        add_correlation_id,
        add_client_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Use console renderer for development, JSON for everything else
    if settings.is_development:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
        force=True,
    )
    # Handler errors are reported by emit(), never raised into requests
    logging.raiseExceptions = False

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def emit(
    logger: structlog.stdlib.BoundLogger,
    level: str,
    event: str,
    **fields: Any,
) -> None:
    """
    Write a log record without letting a sink failure reach the caller.

    Args:
        logger: Logger instance to use
        level: Log method name ("info", "warning", "error", ...)
        event: Event message
        **fields: Structured fields for the record
    """
    try:
        getattr(logger, level)(event, **fields)
    except Exception as e:
        print(
            f"log sink failure while writing {event!r}: {type(e).__name__}: {e}",
            file=sys.stderr,
        )


def set_correlation_id(correlation_id: str) -> str:
    """
    Set correlation ID in context.

    Args:
        correlation_id: Correlation ID assigned to the current request

    Returns:
        Correlation ID that was set
    """
    correlation_id_ctx.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    """
    Get current correlation ID from context.

    Returns:
        Current correlation ID or empty string if not set
    """
    return correlation_id_ctx.get()


def set_client_id(client_id: Optional[str]) -> None:
    """Set the authenticated client identity in context."""
    client_id_ctx.set(client_id)


def get_client_id() -> Optional[str]:
    return client_id_ctx.get()


def clear_context() -> None:
    """
    Clear all context variables.

    Should be called at the end of request processing to prevent
    context leakage between requests.
    """
    correlation_id_ctx.set("")
    client_id_ctx.set(None)


class PerformanceLogger:
    """
    Context manager for performance logging.

    Logs execution time of code blocks with structured context.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            emit(
                self.logger,
                "error",
                "Operation failed",
                operation=self.operation,
                duration_ms=round(duration_ms, 2),
                error_type=exc_type.__name__,
                **self.context,
            )
        else:
            emit(
                self.logger,
                "info",
                "Operation completed",
                operation=self.operation,
                duration_ms=round(duration_ms, 2),
                **self.context,
            )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Create performance logger context manager.

    Args:
        logger: Logger instance to use
        operation: Operation name for logging
        **context: Additional context to include in logs

    Returns:
        PerformanceLogger context manager

    Example:
        >>> logger = get_logger(__name__)
        >>> with log_performance(logger, "documentation_build", versions=1):
        ...     build_descriptors()
    """
    return PerformanceLogger(logger, operation, **context)
