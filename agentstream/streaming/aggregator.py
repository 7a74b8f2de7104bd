"""
Reduction of ordered stream events into one settled result.

Aggregators observe events live (as the dispatcher delivers them) and are
finalized with the complete event list once the stream drains. On failure
the content captured so far is kept; nothing already delivered is retracted.
"""

from __future__ import annotations

import io

from ..exceptions import AggregationInconsistencyError
from .models import (
    ABORTED_ERROR,
    AggregateResult,
    ContentDelta,
    Done,
    Outcome,
    RequestKind,
    StreamEvent,
    ToolStart,
)


def tool_names(events: list[StreamEvent]) -> frozenset[str]:
    """Distinct tool names announced by ToolStart events."""
    return frozenset(
        event.tool_name
        for event in events
        if isinstance(event, ToolStart) and event.tool_name
    )


class CompletionAggregator:
    """Concatenates content deltas in arrival order."""

    def __init__(self):
        self._content = io.StringIO()
        self.event_count = 0

    @property
    def content(self) -> str:
        return self._content.getvalue()

    def observe(self, event: StreamEvent) -> None:
        """Fold one live event into the running state."""
        self.event_count += 1
        if isinstance(event, ContentDelta) and event.content:
            self._content.write(event.content)

    def finalize(self, events: list[StreamEvent]) -> AggregateResult:
        return AggregateResult(outcome=Outcome.COMPLETED, content=self.content)

    def fail(self, error: BaseException | str) -> AggregateResult:
        return AggregateResult(
            outcome=Outcome.FAILED,
            content=self.content,
            error=str(error) or type(error).__name__,
        )

    def abort(self) -> AggregateResult:
        return AggregateResult(
            outcome=Outcome.ABORTED, content=self.content, error=ABORTED_ERROR
        )


class AgentRunAggregator(CompletionAggregator):
    """
    Adds tool usage and terminal usage tracking to content concatenation.

    Tool names are collected twice: live from each observed event and again
    from the full event list at finalization. Both must agree; a mismatch is
    a delivery defect and raises AggregationInconsistencyError.

    That raise is the one exception to aggregation never failing on stream
    content: both sets are derived from the same ordered events, so it only
    fires when the dispatcher delivered live events that differ from the
    list it returned.
    """

    def __init__(self):
        super().__init__()
        self._tools_used: set[str] = set()
        self.total_usage = None

    @property
    def tools_used(self) -> frozenset[str]:
        return frozenset(self._tools_used)

    def observe(self, event: StreamEvent) -> None:
        super().observe(event)
        if isinstance(event, ToolStart) and event.tool_name:
            self._tools_used.add(event.tool_name)
        elif isinstance(event, Done) and event.usage is not None:
            self.total_usage = event.usage

    def finalize(self, events: list[StreamEvent]) -> AggregateResult:
        rescanned = tool_names(events)
        if rescanned != self.tools_used:
            raise AggregationInconsistencyError(self.tools_used, rescanned)

        return AggregateResult(
            outcome=Outcome.COMPLETED,
            content=self.content,
            tools_used=rescanned,
            tool_rounds=len(rescanned),
            total_usage=self.total_usage,
        )

    def fail(self, error: BaseException | str) -> AggregateResult:
        return AggregateResult(
            outcome=Outcome.FAILED,
            content=self.content,
            tools_used=self.tools_used,
            tool_rounds=len(self._tools_used),
            total_usage=self.total_usage,
            error=str(error) or type(error).__name__,
        )


AGGREGATORS: dict[RequestKind, type[CompletionAggregator]] = {
    RequestKind.COMPLETION: CompletionAggregator,
    RequestKind.AGENT_RUN: AgentRunAggregator,
}


def create_aggregator(kind: RequestKind) -> CompletionAggregator:
    return AGGREGATORS[kind]()
