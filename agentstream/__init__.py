"""
Client-side mechanics for streamed, cancellable HTTP requests.

This package turns text/event-stream responses into typed events with:
- Chunk-boundary safe record framing and total event decoding
- In-order live delivery plus per-request aggregation
- A registry of in-flight requests that can be aborted by id
- structlog based logging and YAML configuration
"""

from __future__ import annotations

from .client import StreamClient
from .config import Configuration
from .exceptions import (
    AggregationInconsistencyError,
    CancellationError,
    StreamError,
    TransportError,
)
from .registry import CancellationHandle, RequestLifecycleRegistry, StreamRequest
from .streaming import (
    AggregateResult,
    ContentDelta,
    Done,
    Generic,
    Outcome,
    RequestKind,
    StreamEvent,
    ToolStart,
)

__all__ = [
    "AggregateResult",
    "AggregationInconsistencyError",
    "CancellationError",
    "CancellationHandle",
    "Configuration",
    "ContentDelta",
    "Done",
    "Generic",
    "Outcome",
    "RequestKind",
    "RequestLifecycleRegistry",
    "StreamClient",
    "StreamError",
    "StreamEvent",
    "StreamRequest",
    "ToolStart",
    "TransportError",
]
