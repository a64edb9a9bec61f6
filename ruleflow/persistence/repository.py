"""Repository abstractions for rules, execution logs and notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import ExecutionLogEntry, ExecutionRule, RuleInput, ScheduleInterval
from .models import ExecutionLogStats, Notification, NotificationInput


class RuleRepository(Protocol):
    """Protocol for execution rule storage backends."""

    async def create(self, user_id: str, rule: RuleInput) -> ExecutionRule:
        """Persist a new rule owned by ``user_id``."""

    async def get(self, rule_id: str) -> ExecutionRule | None:
        """Retrieve a rule by id."""

    async def get_by_id_and_user(
        self, rule_id: str, user_id: str
    ) -> ExecutionRule | None:
        """Retrieve a rule only if it belongs to ``user_id``."""

    async def list_by_user(self, user_id: str) -> list[ExecutionRule]:
        """Return every rule owned by ``user_id``."""

    async def get_active_by_user_id(self, user_id: str) -> list[ExecutionRule]:
        """Return active rules for ``user_id`` sorted by priority, highest first."""

    async def get_manual_rules(self, user_id: str) -> list[ExecutionRule]:
        """Return active rules that accept manual invocation."""

    async def has_active_rules(self, user_id: str) -> bool:
        """Return ``True`` if ``user_id`` owns at least one active rule."""

    async def update(
        self, rule_id: str, changes: dict[str, Any]
    ) -> ExecutionRule | None:
        """Apply ``changes`` to the rule and return the updated rule."""

    async def delete(self, rule_id: str) -> bool:
        """Delete a rule; ``False`` when it did not exist."""

    async def increment_execution_count(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> None:
        """Bump ``execution_count`` and set ``last_executed_at``."""

    async def get_scheduled_rules_due(self, now: datetime) -> list[ExecutionRule]:
        """Return rules whose scheduled run is due at ``now``."""

    async def update_schedule_run(
        self, rule_id: str, interval: ScheduleInterval, now: Optional[datetime] = None
    ) -> None:
        """Set ``schedule_last_run = now`` and ``schedule_next_run = now + interval``."""


class ExecutionLogRepository(Protocol):
    """Protocol for the append-only execution log."""

    async def create(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        """Append an entry."""

    async def list_by_rule(
        self, rule_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        """Return a newest-first page of entries for a rule and the total count."""

    async def list_by_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        """Return a newest-first page of entries for a user and the total count."""

    async def recent(self, user_id: str, limit: int = 10) -> list[ExecutionLogEntry]:
        """Return the newest entries for a user."""

    async def delete_older_than(
        self, days: int, now: Optional[datetime] = None
    ) -> int:
        """Delete entries older than ``days`` and return how many were removed."""

    async def get_stats(self, user_id: str) -> ExecutionLogStats:
        """Aggregate statistics for a user."""

    async def get_stats_by_rule(self, rule_id: str) -> ExecutionLogStats:
        """Aggregate statistics for a rule."""


class NotificationRepository(Protocol):
    """Protocol for the user notification sink."""

    async def create(self, notification: NotificationInput) -> Notification:
        """Store a notification."""

    async def list_by_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        """Return notifications for a user, newest first."""

    async def mark_read(self, notification_id: str) -> bool:
        """Mark one notification as read."""

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every notification of a user as read."""
