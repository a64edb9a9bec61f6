"""SQLite implementations of the ruleflow repositories."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ..contracts import (
    ExecutionLogEntry,
    ExecutionRule,
    RuleInput,
    ScheduleInterval,
    StepResult,
    utcnow,
)
from ..errors import StoreError
from ..schedule import next_run_after
from .models import ExecutionLogStats, Notification, NotificationInput

_JSON_RULE_COLUMNS = ("accepted_triggers", "execution_steps", "output_config")
_TIME_RULE_COLUMNS = (
    "last_executed_at",
    "created_at",
    "updated_at",
    "schedule_last_run",
    "schedule_next_run",
)
_RULE_COLUMNS = (
    "id",
    "user_id",
    "name",
    "description",
    "is_active",
    "priority",
    "accepted_triggers",
    "topic_condition",
    "execution_steps",
    "output_config",
    "activation_mode",
    "schedule_enabled",
    "schedule_interval",
    "execution_count",
) + _TIME_RULE_COLUMNS


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class _SQLiteStore:
    """Connection handling shared by the SQLite repositories."""

    _schema: tuple[str, ...] = ()

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        for statement in self._schema:
            cur.execute(statement)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()


class SQLiteRuleRepository(_SQLiteStore):
    """Persist execution rules using SQLite."""

    _schema = (
        """
        CREATE TABLE IF NOT EXISTS execution_rules (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            priority INTEGER NOT NULL DEFAULT 0,
            accepted_triggers TEXT NOT NULL DEFAULT '[]',
            topic_condition TEXT NOT NULL DEFAULT '',
            execution_steps TEXT NOT NULL DEFAULT '[]',
            output_config TEXT NOT NULL DEFAULT '{}',
            activation_mode TEXT NOT NULL DEFAULT 'trigger',
            schedule_enabled INTEGER NOT NULL DEFAULT 0,
            schedule_interval TEXT,
            execution_count INTEGER NOT NULL DEFAULT 0,
            last_executed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            schedule_last_run TEXT,
            schedule_next_run TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_execution_rules_user ON execution_rules(user_id, is_active)",
        """
        CREATE INDEX IF NOT EXISTS idx_execution_rules_scheduled
        ON execution_rules(schedule_enabled, schedule_next_run)
        """,
    )

    @staticmethod
    def _to_row(rule: ExecutionRule) -> tuple[Any, ...]:
        data = rule.model_dump(mode="json")
        values = []
        for column in _RULE_COLUMNS:
            if column in _JSON_RULE_COLUMNS:
                values.append(json.dumps(data[column]))
            elif column in _TIME_RULE_COLUMNS:
                values.append(_ts(getattr(rule, column)))
            elif column in ("is_active", "schedule_enabled"):
                values.append(int(data[column]))
            else:
                values.append(data[column])
        return tuple(values)

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ExecutionRule:
        data: dict[str, Any] = {column: row[column] for column in _RULE_COLUMNS}
        for column in _JSON_RULE_COLUMNS:
            data[column] = json.loads(data[column]) if data[column] else None
        for column in _TIME_RULE_COLUMNS:
            data[column] = _parse_ts(data[column])
        data["is_active"] = bool(data["is_active"])
        data["schedule_enabled"] = bool(data["schedule_enabled"])
        return ExecutionRule.model_validate(
            {k: v for k, v in data.items() if v is not None}
        )

    def _insert(self, rule: ExecutionRule) -> None:
        placeholders = ", ".join("?" for _ in _RULE_COLUMNS)
        self._execute(
            f"INSERT OR REPLACE INTO execution_rules ({', '.join(_RULE_COLUMNS)}) VALUES ({placeholders})",
            *self._to_row(rule),
        )

    def _select(self, where: str, *params: Any) -> list[ExecutionRule]:
        rows = self._fetchall(
            f"SELECT {', '.join(_RULE_COLUMNS)} FROM execution_rules WHERE {where}",
            *params,
        )
        return [self._from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Repository API
    async def create(self, user_id: str, rule: RuleInput) -> ExecutionRule:
        stored = ExecutionRule(
            id=f"rule_{uuid.uuid4().hex}", user_id=user_id, **rule.model_dump()
        )
        await asyncio.to_thread(self._insert, stored)
        return stored

    async def add(self, rule: ExecutionRule) -> ExecutionRule:
        """Insert a fully formed rule, keeping its id and counters."""
        await asyncio.to_thread(self._insert, rule)
        return rule

    async def get(self, rule_id: str) -> ExecutionRule | None:
        rules = await asyncio.to_thread(self._select, "id = ?", rule_id)
        return rules[0] if rules else None

    async def get_by_id_and_user(
        self, rule_id: str, user_id: str
    ) -> ExecutionRule | None:
        rules = await asyncio.to_thread(
            self._select, "id = ? AND user_id = ?", rule_id, user_id
        )
        return rules[0] if rules else None

    async def list_by_user(self, user_id: str) -> list[ExecutionRule]:
        return await asyncio.to_thread(
            self._select, "user_id = ? ORDER BY created_at", user_id
        )

    async def get_active_by_user_id(self, user_id: str) -> list[ExecutionRule]:
        return await asyncio.to_thread(
            self._select,
            "user_id = ? AND is_active = 1 ORDER BY priority DESC, created_at ASC",
            user_id,
        )

    async def get_manual_rules(self, user_id: str) -> list[ExecutionRule]:
        return await asyncio.to_thread(
            self._select,
            "user_id = ? AND is_active = 1 AND activation_mode IN ('manual', 'all') "
            "ORDER BY priority DESC, created_at ASC",
            user_id,
        )

    async def has_active_rules(self, user_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM execution_rules WHERE user_id = ? AND is_active = 1 LIMIT 1",
            user_id,
        )
        return row is not None

    async def update(
        self, rule_id: str, changes: dict[str, Any]
    ) -> ExecutionRule | None:
        current = await self.get(rule_id)
        if current is None:
            return None
        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        updated = ExecutionRule.model_validate(data)
        await asyncio.to_thread(self._insert, updated)
        return updated

    async def delete(self, rule_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM execution_rules WHERE id = ?", rule_id
        )
        return deleted > 0

    async def increment_execution_count(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> None:
        now_ts = _ts(now or utcnow())
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_rules
            SET execution_count = execution_count + 1, last_executed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            now_ts,
            now_ts,
            rule_id,
        )
        if not updated:
            raise StoreError(f"Unknown rule: {rule_id}")

    async def get_scheduled_rules_due(self, now: datetime) -> list[ExecutionRule]:
        return await asyncio.to_thread(
            self._select,
            """
            is_active = 1 AND schedule_enabled = 1
            AND activation_mode IN ('scheduled', 'all')
            AND (schedule_next_run IS NULL OR schedule_next_run <= ?)
            ORDER BY priority DESC, created_at ASC
            """,
            _ts(now),
        )

    async def update_schedule_run(
        self, rule_id: str, interval: ScheduleInterval, now: Optional[datetime] = None
    ) -> None:
        now = now or utcnow()
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_rules
            SET schedule_last_run = ?, schedule_next_run = ?, updated_at = ?
            WHERE id = ?
            """,
            _ts(now),
            _ts(next_run_after(interval, now)),
            _ts(now),
            rule_id,
        )
        if not updated:
            raise StoreError(f"Unknown rule: {rule_id}")


class SQLiteExecutionLogRepository(_SQLiteStore):
    """Persist the execution log using SQLite."""

    _schema = (
        """
        CREATE TABLE IF NOT EXISTS execution_log (
            id TEXT PRIMARY KEY,
            rule_id TEXT NOT NULL,
            rule_name TEXT NOT NULL,
            user_id TEXT NOT NULL,
            trigger_slug TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('success', 'failure', 'partial')),
            steps_json TEXT,
            output_text TEXT,
            error_text TEXT,
            duration_ms INTEGER,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_execution_log_user_id ON execution_log(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_execution_log_rule_id ON execution_log(rule_id)",
        "CREATE INDEX IF NOT EXISTS idx_execution_log_created_at ON execution_log(created_at)",
    )

    _select_columns = (
        "id, rule_id, rule_name, user_id, trigger_slug, status, steps_json, "
        "output_text, error_text, duration_ms, created_at"
    )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ExecutionLogEntry:
        steps = json.loads(row["steps_json"]) if row["steps_json"] else []
        return ExecutionLogEntry(
            id=row["id"],
            rule_id=row["rule_id"],
            rule_name=row["rule_name"],
            user_id=row["user_id"],
            trigger_slug=row["trigger_slug"],
            status=row["status"],
            steps=[StepResult.model_validate(s) for s in steps],
            output_text=row["output_text"],
            error_text=row["error_text"],
            duration_ms=row["duration_ms"],
            created_at=_parse_ts(row["created_at"]),
        )

    def _page(
        self, column: str, value: str, limit: int, offset: int
    ) -> tuple[list[ExecutionLogEntry], int]:
        rows = self._fetchall(
            f"SELECT {self._select_columns} FROM execution_log WHERE {column} = ? "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            value,
            limit,
            offset,
        )
        total = self._fetchone(
            f"SELECT COUNT(*) AS n FROM execution_log WHERE {column} = ?", value
        )["n"]
        return [self._from_row(r) for r in rows], total

    def _stats(self, column: str, value: str) -> ExecutionLogStats:
        row = self._fetchone(
            f"""
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                   AVG(duration_ms) AS avg_duration
            FROM execution_log WHERE {column} = ?
            """,
            value,
        )
        total = row["total"] or 0
        if not total:
            return ExecutionLogStats()
        return ExecutionLogStats(
            total_runs=total,
            success_rate=(row["successes"] or 0) / total * 100,
            avg_duration_ms=round(row["avg_duration"] or 0),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO execution_log ({self._select_columns}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            entry.id,
            entry.rule_id,
            entry.rule_name,
            entry.user_id,
            entry.trigger_slug,
            entry.status.value,
            json.dumps([s.model_dump(mode="json") for s in entry.steps]),
            entry.output_text,
            entry.error_text,
            entry.duration_ms,
            _ts(entry.created_at),
        )
        return entry

    async def list_by_rule(
        self, rule_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        return await asyncio.to_thread(self._page, "rule_id", rule_id, limit, offset)

    async def list_by_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        return await asyncio.to_thread(self._page, "user_id", user_id, limit, offset)

    async def recent(self, user_id: str, limit: int = 10) -> list[ExecutionLogEntry]:
        entries, _ = await self.list_by_user(user_id, limit=limit)
        return entries

    async def delete_older_than(
        self, days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        return await asyncio.to_thread(
            self._execute, "DELETE FROM execution_log WHERE created_at < ?", _ts(cutoff)
        )

    async def get_stats(self, user_id: str) -> ExecutionLogStats:
        return await asyncio.to_thread(self._stats, "user_id", user_id)

    async def get_stats_by_rule(self, rule_id: str) -> ExecutionLogStats:
        return await asyncio.to_thread(self._stats, "rule_id", rule_id)


class SQLiteNotificationRepository(_SQLiteStore):
    """Persist user notifications using SQLite."""

    _schema = (
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            rule_id TEXT,
            rule_name TEXT,
            log_id TEXT,
            read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, read)",
    )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"],
            body=row["body"],
            rule_id=row["rule_id"],
            rule_name=row["rule_name"],
            log_id=row["log_id"],
            read=bool(row["read"]),
            created_at=_parse_ts(row["created_at"]),
        )

    async def create(self, notification: NotificationInput) -> Notification:
        stored = Notification(**notification.model_dump())
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO notifications
                (id, user_id, type, title, body, rule_id, rule_name, log_id, read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            stored.id,
            stored.user_id,
            stored.type,
            stored.title,
            stored.body,
            stored.rule_id,
            stored.rule_name,
            stored.log_id,
            int(stored.read),
            _ts(stored.created_at),
        )
        return stored

    async def list_by_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY created_at DESC", user_id
        )
        return [self._from_row(r) for r in rows]

    async def mark_read(self, notification_id: str) -> bool:
        updated = await asyncio.to_thread(
            self._execute, "UPDATE notifications SET read = 1 WHERE id = ?", notification_id
        )
        return updated > 0

    async def mark_all_read(self, user_id: str) -> int:
        return await asyncio.to_thread(
            self._execute,
            "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0",
            user_id,
        )
