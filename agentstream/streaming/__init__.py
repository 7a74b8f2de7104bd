"""
Event-stream ingestion: framing, decoding, dispatch and aggregation.
"""

from __future__ import annotations

from .aggregator import AgentRunAggregator, CompletionAggregator, create_aggregator
from .decoder import decode_record, extract_payload, normalize_keys
from .dispatcher import EventDispatcher
from .framer import RecordFramer
from .models import (
    AggregateResult,
    ContentDelta,
    Done,
    Generic,
    Outcome,
    RequestKind,
    StreamEvent,
    StreamEventType,
    ToolStart,
)

__all__ = [
    "AgentRunAggregator",
    "AggregateResult",
    "CompletionAggregator",
    "ContentDelta",
    "Done",
    "EventDispatcher",
    "Generic",
    "Outcome",
    "RecordFramer",
    "RequestKind",
    "StreamEvent",
    "StreamEventType",
    "ToolStart",
    "create_aggregator",
    "decode_record",
    "extract_payload",
    "normalize_keys",
]
