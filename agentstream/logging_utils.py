"""
Centralized logging and error classification utilities for agentstream.

This module provides decorators and helper functions to standardize logging
around streamed requests, reducing boilerplate and ensuring consistent
error reporting.

Features:
- Structured logging with contextual information
- Automatic error type detection and classification
- Performance timing for operations
- Per-request bound loggers
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog

from .exceptions import CancellationError, TransportError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

PACKAGE_LOGGER = "agentstream"

logger = structlog.get_logger(__name__)


def set_log_level(level: str | int) -> None:
    """Set the stdlib level that structlog's level filter honours."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(
        level.upper() if isinstance(level, str) else level
    )


class StreamErrorHandler:
    """Centralized stream error classification for structured logs."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error into a logging category.

        Args:
            error: The exception to classify

        Returns:
            Error category name
        """
        if isinstance(error, CancellationError | asyncio.CancelledError):
            return "cancelled"
        if isinstance(error, TransportError) and error.status_code is not None:
            return "http_status_error"
        if isinstance(error, httpx.TimeoutException | TimeoutError):
            return "timeout_error"
        if isinstance(error, TransportError | httpx.HTTPError):
            return "transport_error"
        if isinstance(error, ConnectionError | OSError):
            return "connection_error"
        return "unknown_error"

    @staticmethod
    def describe(error: BaseException) -> dict[str, Any]:
        """Build the structured fields logged for a failure."""
        return {
            "error_type": type(error).__name__,
            "error_category": StreamErrorHandler.classify_error(error),
            "error_message": str(error),
        }


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed
        log_args: Whether to log function arguments
        log_result: Whether to log function result
        log_timing: Whether to log execution timing
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            log_data = {}
            if log_args:
                log_data.update({
                    "args": args[1:] if args else [],  # Skip 'self' if present
                    "kwargs": kwargs,
                })

            operation_logger.debug("Operation started", **log_data)

            start_time = time.perf_counter() if log_timing else None

            try:
                result = await func(*args, **kwargs)

                end_log_data: dict[str, Any] = {}
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    end_log_data["duration_ms"] = duration
                if log_result:
                    end_log_data["result"] = result

                operation_logger.debug(
                    "Operation completed successfully", **end_log_data
                )
                return result

            except Exception as e:
                error_log_data: dict[str, Any] = StreamErrorHandler.describe(e)
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    error_log_data["duration_ms"] = duration

                operation_logger.error("Operation failed", **error_log_data)
                raise

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """
    Async context manager for operation logging.

    Cancellation is logged at info level and re-raised untouched.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.debug("Operation started")
    start_time = time.perf_counter() if log_timing else None

    def _timing() -> dict[str, Any]:
        if log_timing and start_time is not None:
            return {
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2)
            }
        return {}

    try:
        yield operation_logger
        operation_logger.debug("Operation completed successfully", **_timing())

    except asyncio.CancelledError:
        operation_logger.info("Operation cancelled", **_timing())
        raise

    except Exception as e:
        operation_logger.error(
            "Operation failed", **StreamErrorHandler.describe(e), **_timing()
        )
        raise


class ContextualLogger:
    """Logger that maintains context across related operations."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = base_context or {}
        self._logger = logger.bind(**self.base_context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message with context."""
        self._logger.warning(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        """Log debug message with context."""
        self._logger.debug(message, **context)
