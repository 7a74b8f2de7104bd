"""
Error types for streamed request handling.

This module provides the error taxonomy used across the streaming core:
- Transport failures (HTTP status or network errors, before or mid-stream)
- Local, caller-triggered cancellation
- Aggregation defects (should never be observed at runtime)

Decode failures have no exception type: the decoder always recovers them
into a text fallback event.
"""

from __future__ import annotations


class StreamError(Exception):
    """Base streaming error with request context."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class TransportError(StreamError):
    """Network or HTTP failure before or during a stream."""
    pass


class CancellationError(StreamError):
    """Request was aborted locally by the caller."""

    def __init__(self, request_id: str | None = None, **kwargs):
        super().__init__("aborted", **kwargs)
        self.request_id = request_id


class AggregationInconsistencyError(StreamError):
    """Live and re-scanned tool usage disagree for the same event sequence."""

    def __init__(
        self,
        live: frozenset[str],
        rescanned: frozenset[str],
        **kwargs,
    ):
        super().__init__(
            f"Tool usage mismatch: live={sorted(live)} "
            f"rescanned={sorted(rescanned)}",
            **kwargs,
        )
        self.live = live
        self.rescanned = rescanned
