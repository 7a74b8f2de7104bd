"""
Streaming dataclasses: decoded events and settled results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StreamEventType(Enum):
    """Tags of the decoded event union."""
    CONTENT = "content"
    TOOL_START = "tool_start"
    DONE = "done"
    GENERIC = "generic"


class Outcome(Enum):
    """How a streamed request settled."""
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class RequestKind(Enum):
    """Registered streaming request kinds."""
    COMPLETION = "completion"
    AGENT_RUN = "agent_run"


ABORTED_ERROR = "aborted"


@dataclass(frozen=True)
class ContentDelta:
    """A fragment of generated text."""
    content: str
    fields: dict[str, Any] = field(default_factory=dict)
    kind: StreamEventType = field(default=StreamEventType.CONTENT, init=False)


@dataclass(frozen=True)
class ToolStart:
    """The agent started running a tool."""
    tool_name: str | None
    fields: dict[str, Any] = field(default_factory=dict)
    kind: StreamEventType = field(default=StreamEventType.TOOL_START, init=False)


@dataclass(frozen=True)
class Done:
    """Terminal event, optionally carrying usage."""
    usage: Any = None
    fields: dict[str, Any] = field(default_factory=dict)
    kind: StreamEventType = field(default=StreamEventType.DONE, init=False)


@dataclass(frozen=True)
class Generic:
    """Any other event; fields are kept as decoded."""
    fields: dict[str, Any] = field(default_factory=dict)
    kind: StreamEventType = field(default=StreamEventType.GENERIC, init=False)


StreamEvent = ContentDelta | ToolStart | Done | Generic


@dataclass(frozen=True)
class AggregateResult:
    """Single reduced result of a settled streamed request."""
    outcome: Outcome
    content: str = ""
    tools_used: frozenset[str] = frozenset()
    tool_rounds: int = 0
    total_usage: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.COMPLETED

    @property
    def aborted(self) -> bool:
        return self.outcome is Outcome.ABORTED

    def to_dict(self) -> dict[str, Any]:
        """Plain representation; failed results omit the aggregate fields."""
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "content": self.content,
            "tools_used": sorted(self.tools_used),
            "tool_rounds": self.tool_rounds,
            "total_usage": self.total_usage,
        }
