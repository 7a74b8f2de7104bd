#!/usr/bin/env python3
"""
Test script for logging utilities.

This validates that the centralized logging and error classification works correctly.
"""

import asyncio
import logging

import httpx
import pytest

from agentstream.exceptions import CancellationError, TransportError
from agentstream.logging_utils import (
    PACKAGE_LOGGER,
    ContextualLogger,
    StreamErrorHandler,
    log_operation,
    operation_context,
    set_log_level,
)


class TestStreamErrorHandler:
    """Test the StreamErrorHandler class."""

    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (CancellationError("chat_1"), "cancelled"),
            (asyncio.CancelledError(), "cancelled"),
            (TransportError("HTTP 500: Internal Server Error", status_code=500), "http_status_error"),
            (httpx.ReadTimeout("slow"), "timeout_error"),
            (TimeoutError(), "timeout_error"),
            (TransportError("Stream error: reset"), "transport_error"),
            (httpx.ReadError("reset"), "transport_error"),
            (ConnectionError("Network unreachable"), "connection_error"),
            (RuntimeError("Unknown error"), "unknown_error"),
        ],
    )
    def test_classify_error(self, error, category):
        assert StreamErrorHandler.classify_error(error) == category

    def test_describe(self):
        """Test structured fields for a failure."""
        described = StreamErrorHandler.describe(
            TransportError("HTTP 404: Not Found", status_code=404)
        )
        assert described == {
            "error_type": "TransportError",
            "error_category": "http_status_error",
            "error_message": "HTTP 404: Not Found",
        }


class TestDecorators:
    """Test logging decorators."""

    @pytest.mark.asyncio
    async def test_log_operation_success(self):
        """Test log_operation decorator with successful function."""

        @log_operation("test_operation", log_timing=True, log_result=True)
        async def successful_function():
            return "success"

        result = await successful_function()
        assert result == "success"

    @pytest.mark.asyncio
    async def test_log_operation_with_error(self):
        """Test log_operation decorator re-raises the original error."""

        @log_operation("test_operation", log_timing=True)
        async def failing_function():
            raise TransportError("Stream error: reset")

        with pytest.raises(TransportError, match="reset"):
            await failing_function()

    @pytest.mark.asyncio
    async def test_log_operation_keeps_metadata(self):

        @log_operation("test_operation", log_args=True)
        async def named_function(value):
            """Docstring survives."""
            return value * 2

        assert named_function.__name__ == "named_function"
        assert named_function.__doc__ == "Docstring survives."
        assert await named_function(21) == 42


class TestContextManager:
    """Test operation context manager."""

    @pytest.mark.asyncio
    async def test_operation_context_success(self):
        """Test operation context manager with successful operation."""

        async with operation_context("test_operation", log_timing=True) as logger:
            assert logger is not None

    @pytest.mark.asyncio
    async def test_operation_context_with_error(self):
        """Test operation context manager with failing operation."""

        with pytest.raises(ValueError, match="Test error"):
            async with operation_context("test_operation", log_timing=True):
                raise ValueError("Test error")

    @pytest.mark.asyncio
    async def test_operation_context_propagates_cancellation(self):
        entered = asyncio.Event()

        async def guarded():
            async with operation_context("waiting", context={"path": "/x"}):
                entered.set()
                await asyncio.Event().wait()

        task = asyncio.ensure_future(guarded())
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestContextualLogger:
    """Test ContextualLogger class."""

    def test_contextual_logger_initialization(self):
        """Test ContextualLogger initialization."""
        context = {"request_id": "agent_1", "kind": "agent_run"}
        logger = ContextualLogger(context)
        assert logger.base_context == context

    def test_contextual_logger_methods(self):
        """Test ContextualLogger logging methods don't raise exceptions."""
        logger = ContextualLogger({"request_id": "test"})

        logger.warning("Test warning message", extra="data")
        logger.debug("Test debug message", extra="data")


@pytest.mark.parametrize(("level", "expected"), [("debug", logging.DEBUG), (logging.ERROR, logging.ERROR)])
def test_set_log_level(level, expected):
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    previous = package_logger.level
    try:
        set_log_level(level)
        assert package_logger.level == expected
    finally:
        package_logger.setLevel(previous)
