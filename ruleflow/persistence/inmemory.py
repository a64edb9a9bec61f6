"""In-memory implementations of the ruleflow repositories."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..contracts import ExecutionLogEntry, ExecutionRule, RuleInput, ScheduleInterval, utcnow
from ..errors import StoreError
from ..schedule import next_run_after
from .models import ExecutionLogStats, Notification, NotificationInput


def _newest_first(entries: List[ExecutionLogEntry]) -> List[ExecutionLogEntry]:
    return sorted(entries, key=lambda e: e.created_at, reverse=True)


class InMemoryRuleRepository:
    """Store rules in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._rules: Dict[str, ExecutionRule] = {}

    def _require(self, rule_id: str) -> ExecutionRule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise StoreError(f"Unknown rule: {rule_id}")
        return rule

    # ------------------------------------------------------------------
    async def create(self, user_id: str, rule: RuleInput) -> ExecutionRule:
        stored = ExecutionRule(
            id=f"rule_{uuid.uuid4().hex}", user_id=user_id, **rule.model_dump()
        )
        self._rules[stored.id] = stored
        return stored

    async def add(self, rule: ExecutionRule) -> ExecutionRule:
        """Insert a fully formed rule, keeping its id and counters."""
        self._rules[rule.id] = rule
        return rule

    async def get(self, rule_id: str) -> ExecutionRule | None:
        return self._rules.get(rule_id)

    async def get_by_id_and_user(
        self, rule_id: str, user_id: str
    ) -> ExecutionRule | None:
        rule = self._rules.get(rule_id)
        if rule is None or rule.user_id != user_id:
            return None
        return rule

    async def list_by_user(self, user_id: str) -> list[ExecutionRule]:
        return [r for r in self._rules.values() if r.user_id == user_id]

    async def get_active_by_user_id(self, user_id: str) -> list[ExecutionRule]:
        active = [r for r in self._rules.values() if r.user_id == user_id and r.is_active]
        # stable sort: priority desc, then oldest first
        active.sort(key=lambda r: r.created_at)
        active.sort(key=lambda r: r.priority, reverse=True)
        return active

    async def get_manual_rules(self, user_id: str) -> list[ExecutionRule]:
        return [r for r in await self.get_active_by_user_id(user_id) if r.is_manual_eligible()]

    async def has_active_rules(self, user_id: str) -> bool:
        return any(r.user_id == user_id and r.is_active for r in self._rules.values())

    async def update(
        self, rule_id: str, changes: dict[str, Any]
    ) -> ExecutionRule | None:
        rule = self._rules.get(rule_id)
        if rule is None:
            return None
        data = rule.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        updated = ExecutionRule.model_validate(data)
        self._rules[rule_id] = updated
        return updated

    async def delete(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def increment_execution_count(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> None:
        rule = self._require(rule_id)
        now = now or utcnow()
        self._rules[rule_id] = rule.model_copy(
            update={
                "execution_count": rule.execution_count + 1,
                "last_executed_at": now,
                "updated_at": now,
            }
        )

    async def get_scheduled_rules_due(self, now: datetime) -> list[ExecutionRule]:
        return [r for r in self._rules.values() if r.is_schedule_due(now)]

    async def update_schedule_run(
        self, rule_id: str, interval: ScheduleInterval, now: Optional[datetime] = None
    ) -> None:
        rule = self._require(rule_id)
        now = now or utcnow()
        self._rules[rule_id] = rule.model_copy(
            update={
                "schedule_last_run": now,
                "schedule_next_run": next_run_after(interval, now),
                "updated_at": now,
            }
        )


class InMemoryExecutionLogRepository:
    """Append-only execution log kept in a Python list."""

    def __init__(self) -> None:
        self._entries: List[ExecutionLogEntry] = []

    async def create(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        self._entries.append(entry)
        return entry

    async def list_by_rule(
        self, rule_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        matching = _newest_first([e for e in self._entries if e.rule_id == rule_id])
        return matching[offset : offset + limit], len(matching)

    async def list_by_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        matching = _newest_first([e for e in self._entries if e.user_id == user_id])
        return matching[offset : offset + limit], len(matching)

    async def recent(self, user_id: str, limit: int = 10) -> list[ExecutionLogEntry]:
        entries, _ = await self.list_by_user(user_id, limit=limit)
        return entries

    async def delete_older_than(
        self, days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        kept = [e for e in self._entries if e.created_at >= cutoff]
        deleted = len(self._entries) - len(kept)
        self._entries = kept
        return deleted

    async def get_stats(self, user_id: str) -> ExecutionLogStats:
        return ExecutionLogStats.from_entries(e for e in self._entries if e.user_id == user_id)

    async def get_stats_by_rule(self, rule_id: str) -> ExecutionLogStats:
        return ExecutionLogStats.from_entries(e for e in self._entries if e.rule_id == rule_id)


class InMemoryNotificationRepository:
    """Notification sink kept in local memory."""

    def __init__(self) -> None:
        self._notifications: Dict[str, Notification] = {}

    async def create(self, notification: NotificationInput) -> Notification:
        stored = Notification(**notification.model_dump())
        self._notifications[stored.id] = stored
        return stored

    async def list_by_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        items = [
            n
            for n in self._notifications.values()
            if n.user_id == user_id and not (unread_only and n.read)
        ]
        return sorted(items, key=lambda n: n.created_at, reverse=True)

    async def mark_read(self, notification_id: str) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None:
            return False
        notification.read = True
        return True

    async def mark_all_read(self, user_id: str) -> int:
        count = 0
        for notification in self._notifications.values():
            if notification.user_id == user_id and not notification.read:
                notification.read = True
                count += 1
        return count
