"""Data models owned by the persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import ExecutionLogEntry, ExecutionStatus, utcnow

NotificationType = Literal[
    "execution_success", "execution_failure", "needs_approval", "suggestion", "info"
]


class ExecutionLogStats(BaseModel):
    """Aggregate statistics over a set of execution log entries."""

    total_runs: int = 0
    success_rate: float = 0.0
    avg_duration_ms: int = 0

    @classmethod
    def from_entries(cls, entries: Iterable[ExecutionLogEntry]) -> "ExecutionLogStats":
        entries = list(entries)
        total = len(entries)
        if not total:
            return cls()
        successes = sum(1 for e in entries if e.status == ExecutionStatus.SUCCESS)
        durations = [e.duration_ms for e in entries if e.duration_ms is not None]
        avg = round(sum(durations) / len(durations)) if durations else 0
        return cls(
            total_runs=total,
            success_rate=successes / total * 100,
            avg_duration_ms=avg,
        )


class NotificationInput(BaseModel):
    user_id: str
    type: NotificationType
    title: str
    body: str
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    log_id: Optional[str] = None


class Notification(NotificationInput):
    """A stored user notification."""

    id: str = Field(default_factory=lambda: f"ntf_{uuid.uuid4().hex}")
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
