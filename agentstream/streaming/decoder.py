"""
Event decoding for framed event-stream records.

`decode_record` is total: any string maps to a typed event or to None, and
malformed payloads degrade to a text content event instead of raising.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .models import ContentDelta, Done, Generic, StreamEvent, ToolStart

DATA_PREFIX = "data:"

_LOWER_UPPER = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_ACRONYM_END = re.compile(r"(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake(key: str) -> str:
    """Convert a camelCase or snake_case key to snake_case."""
    return _LOWER_UPPER.sub("_", _ACRONYM_END.sub("_", key)).lower()


def normalize_keys(value: Any) -> Any:
    """Recursively convert every mapping key in a decoded value to snake_case."""
    if isinstance(value, list):
        return [normalize_keys(item) for item in value]
    if isinstance(value, dict):
        return {to_snake(str(k)): normalize_keys(v) for k, v in value.items()}
    return value


def extract_payload(text: str) -> str:
    """
    Reassemble the data payload carried by a block of event-stream text.

    Only lines starting with the data prefix are kept; the prefix and at most
    one following space are removed and the remaining pieces are joined with
    newlines.
    """
    pieces = []
    for line in text.split("\n"):
        if not line.startswith(DATA_PREFIX):
            continue
        piece = line[len(DATA_PREFIX):]
        if piece.startswith(" "):
            piece = piece[1:]
        pieces.append(piece)
    return "\n".join(pieces)


def parse_payload(payload: str) -> dict[str, Any]:
    """Parse a payload into normalized fields, falling back to raw text."""
    try:
        value = normalize_keys(json.loads(payload))
    except (ValueError, RecursionError):
        return {"content": payload}
    if isinstance(value, dict):
        return value
    return {"value": value}


def classify(fields: dict[str, Any]) -> StreamEvent:
    """Map normalized fields onto the event union."""
    event_type = fields.get("type")
    content = fields.get("content")

    if event_type == "content" or (event_type is None and isinstance(content, str)):
        return ContentDelta(
            content="" if content is None else str(content), fields=fields
        )
    if event_type == "tool_start":
        tool_name = fields.get("tool_name")
        return ToolStart(
            tool_name=tool_name if isinstance(tool_name, str) else None,
            fields=fields,
        )
    if event_type == "done":
        return Done(usage=fields.get("usage"), fields=fields)
    return Generic(fields=fields)


def decode_record(record: str) -> StreamEvent | None:
    """Decode one framed record; records without payload yield None."""
    payload = extract_payload(record)
    if not payload:
        return None
    return classify(parse_payload(payload))
