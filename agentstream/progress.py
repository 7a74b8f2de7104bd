"""
Progress snapshots read from one-shot event-stream endpoints.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

Stage = Literal["detecting", "reading", "parsing", "saving", "done", "error"]

_STAGE_ALIASES: dict[str, Stage] = {
    "detecting": "detecting",
    "reading": "reading",
    "parsing": "parsing",
    "saving": "saving",
    "completed": "done",
    "done": "done",
    "success": "done",
    "idle": "done",
    "failed": "error",
    "error": "error",
}


def normalize_stage(status: Any) -> Stage:
    """Map a server status onto a stage; unknown statuses count as reading."""
    return _STAGE_ALIASES.get(str(status or "").lower(), "reading")


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


class ProgressSnapshot(BaseModel):
    """Point-in-time progress of a long-running server task."""
    stage: Stage
    progress: int
    message: str = ""
    total: int = 0
    processed: int = 0

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> ProgressSnapshot:
        total = _to_int(fields.get("total"))
        processed = _to_int(fields.get("processed"))
        stage = normalize_stage(fields.get("status"))

        if total > 0:
            progress = max(0, min(100, round(processed / total * 100)))
        else:
            progress = 100 if stage == "done" else 0

        return cls(
            stage=stage,
            progress=progress,
            message=str(fields.get("error") or fields.get("current_file") or ""),
            total=total,
            processed=processed,
        )
