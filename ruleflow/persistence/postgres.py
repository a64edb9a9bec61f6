"""PostgreSQL implementations of the ruleflow repositories."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

import asyncpg

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
    "last_executed_at",
    "created_at",
    "updated_at",
    "schedule_last_run",
    "schedule_next_run",
)
_JSON_RULE_COLUMNS = ("accepted_triggers", "execution_steps", "output_config")


def _json_value(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class _PostgresStore:
    """Connection handling shared by the PostgreSQL repositories."""

    _schema: tuple[str, ...] = ()

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            for statement in self._schema:
                await conn.execute(statement)
            self._initialized = True
        return conn

    async def _execute(self, query: str, *params: Any) -> int:
        conn = await self._connect()
        try:
            return _affected(await conn.execute(query, *params))
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()


class PostgresRuleRepository(_PostgresStore):
    """Persist execution rules using PostgreSQL."""

    _schema = (
        """
        CREATE TABLE IF NOT EXISTS execution_rules (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            is_active BOOLEAN NOT NULL DEFAULT true,
            priority INTEGER NOT NULL DEFAULT 0,
            accepted_triggers JSONB NOT NULL DEFAULT '[]'::jsonb,
            topic_condition TEXT NOT NULL DEFAULT '',
            execution_steps JSONB NOT NULL DEFAULT '[]'::jsonb,
            output_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            activation_mode TEXT NOT NULL DEFAULT 'trigger'
                CHECK (activation_mode IN ('trigger', 'manual', 'scheduled', 'all')),
            schedule_enabled BOOLEAN NOT NULL DEFAULT false,
            schedule_interval TEXT
                CHECK (schedule_interval IS NULL OR schedule_interval IN ('15min', 'hourly', 'daily', 'weekly')),
            execution_count INTEGER NOT NULL DEFAULT 0,
            last_executed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            schedule_last_run TIMESTAMPTZ,
            schedule_next_run TIMESTAMPTZ
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_execution_rules_user_active
        ON execution_rules(user_id, is_active) WHERE is_active = true
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_execution_rules_scheduled
        ON execution_rules(schedule_enabled, schedule_next_run) WHERE schedule_enabled = true
        """,
    )

    @staticmethod
    def _from_record(record: asyncpg.Record) -> ExecutionRule:
        data = dict(record)
        for column in _JSON_RULE_COLUMNS:
            data[column] = _json_value(data[column])
        return ExecutionRule.model_validate({k: v for k, v in data.items() if v is not None})

    async def _upsert(self, rule: ExecutionRule) -> None:
        data = rule.model_dump(mode="json")
        values = []
        for column in _RULE_COLUMNS:
            if column in _JSON_RULE_COLUMNS:
                values.append(json.dumps(data[column]))
            else:
                # keep datetimes as objects for TIMESTAMPTZ columns
                values.append(getattr(rule, column))
        placeholders = ", ".join(f"${i}" for i in range(1, len(_RULE_COLUMNS) + 1))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in _RULE_COLUMNS[1:])
        await self._execute(
            f"INSERT INTO execution_rules ({', '.join(_RULE_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT (id) DO UPDATE SET {updates}",
            *values,
        )

    async def _select(self, where: str, *params: Any) -> list[ExecutionRule]:
        records = await self._fetch(
            f"SELECT {', '.join(_RULE_COLUMNS)} FROM execution_rules WHERE {where}",
            *params,
        )
        return [self._from_record(r) for r in records]

    # ------------------------------------------------------------------
    async def create(self, user_id: str, rule: RuleInput) -> ExecutionRule:
        stored = ExecutionRule(
            id=f"rule_{uuid.uuid4().hex}", user_id=user_id, **rule.model_dump()
        )
        await self._upsert(stored)
        return stored

    async def add(self, rule: ExecutionRule) -> ExecutionRule:
        """Insert a fully formed rule, keeping its id and counters."""
        await self._upsert(rule)
        return rule

    async def get(self, rule_id: str) -> ExecutionRule | None:
        rules = await self._select("id = $1", rule_id)
        return rules[0] if rules else None

    async def get_by_id_and_user(
        self, rule_id: str, user_id: str
    ) -> ExecutionRule | None:
        rules = await self._select("id = $1 AND user_id = $2", rule_id, user_id)
        return rules[0] if rules else None

    async def list_by_user(self, user_id: str) -> list[ExecutionRule]:
        return await self._select("user_id = $1 ORDER BY created_at", user_id)

    async def get_active_by_user_id(self, user_id: str) -> list[ExecutionRule]:
        return await self._select(
            "user_id = $1 AND is_active ORDER BY priority DESC, created_at ASC", user_id
        )

    async def get_manual_rules(self, user_id: str) -> list[ExecutionRule]:
        return await self._select(
            "user_id = $1 AND is_active AND activation_mode IN ('manual', 'all') "
            "ORDER BY priority DESC, created_at ASC",
            user_id,
        )

    async def has_active_rules(self, user_id: str) -> bool:
        row = await self._fetchrow(
            "SELECT 1 FROM execution_rules WHERE user_id = $1 AND is_active LIMIT 1",
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
        await self._upsert(updated)
        return updated

    async def delete(self, rule_id: str) -> bool:
        return await self._execute("DELETE FROM execution_rules WHERE id = $1", rule_id) > 0

    async def increment_execution_count(
        self, rule_id: str, now: Optional[datetime] = None
    ) -> None:
        now = now or utcnow()
        updated = await self._execute(
            """
            UPDATE execution_rules
            SET execution_count = execution_count + 1, last_executed_at = $1, updated_at = $1
            WHERE id = $2
            """,
            now,
            rule_id,
        )
        if not updated:
            raise StoreError(f"Unknown rule: {rule_id}")

    async def get_scheduled_rules_due(self, now: datetime) -> list[ExecutionRule]:
        return await self._select(
            """
            is_active AND schedule_enabled
            AND activation_mode IN ('scheduled', 'all')
            AND (schedule_next_run IS NULL OR schedule_next_run <= $1)
            ORDER BY priority DESC, created_at ASC
            """,
            now,
        )

    async def update_schedule_run(
        self, rule_id: str, interval: ScheduleInterval, now: Optional[datetime] = None
    ) -> None:
        now = now or utcnow()
        updated = await self._execute(
            """
            UPDATE execution_rules
            SET schedule_last_run = $1, schedule_next_run = $2, updated_at = $1
            WHERE id = $3
            """,
            now,
            next_run_after(interval, now),
            rule_id,
        )
        if not updated:
            raise StoreError(f"Unknown rule: {rule_id}")


class PostgresExecutionLogRepository(_PostgresStore):
    """Persist the execution log using PostgreSQL."""

    _schema = (
        """
        CREATE TABLE IF NOT EXISTS execution_log (
            id TEXT PRIMARY KEY,
            rule_id TEXT NOT NULL,
            rule_name TEXT NOT NULL,
            user_id TEXT NOT NULL,
            trigger_slug TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('success', 'failure', 'partial')),
            steps_json JSONB,
            output_text TEXT,
            error_text TEXT,
            duration_ms INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
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
    def _from_record(r: asyncpg.Record) -> ExecutionLogEntry:
        steps = _json_value(r["steps_json"]) or []
        return ExecutionLogEntry(
            id=r["id"],
            rule_id=r["rule_id"],
            rule_name=r["rule_name"],
            user_id=r["user_id"],
            trigger_slug=r["trigger_slug"],
            status=r["status"],
            steps=[StepResult.model_validate(s) for s in steps],
            output_text=r["output_text"],
            error_text=r["error_text"],
            duration_ms=r["duration_ms"],
            created_at=r["created_at"],
        )

    async def _page(
        self, column: str, value: str, limit: int, offset: int
    ) -> tuple[list[ExecutionLogEntry], int]:
        records = await self._fetch(
            f"SELECT {self._select_columns} FROM execution_log WHERE {column} = $1 "
            "ORDER BY created_at DESC LIMIT $2 OFFSET $3",
            value,
            limit,
            offset,
        )
        total = await self._fetchrow(
            f"SELECT COUNT(*) AS n FROM execution_log WHERE {column} = $1", value
        )
        return [self._from_record(r) for r in records], total["n"]

    async def _stats(self, column: str, value: str) -> ExecutionLogStats:
        row = await self._fetchrow(
            f"""
            SELECT COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE status = 'success') AS successes,
                   AVG(duration_ms) AS avg_duration
            FROM execution_log WHERE {column} = $1
            """,
            value,
        )
        total = row["total"] or 0
        if not total:
            return ExecutionLogStats()
        return ExecutionLogStats(
            total_runs=total,
            success_rate=row["successes"] / total * 100,
            avg_duration_ms=round(float(row["avg_duration"] or 0)),
        )

    # ------------------------------------------------------------------
    async def create(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        await self._execute(
            f"INSERT INTO execution_log ({self._select_columns}) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
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
            entry.created_at,
        )
        return entry

    async def list_by_rule(
        self, rule_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        return await self._page("rule_id", rule_id, limit, offset)

    async def list_by_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ExecutionLogEntry], int]:
        return await self._page("user_id", user_id, limit, offset)

    async def recent(self, user_id: str, limit: int = 10) -> list[ExecutionLogEntry]:
        entries, _ = await self._page("user_id", user_id, limit, 0)
        return entries

    async def delete_older_than(
        self, days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        return await self._execute("DELETE FROM execution_log WHERE created_at < $1", cutoff)

    async def get_stats(self, user_id: str) -> ExecutionLogStats:
        return await self._stats("user_id", user_id)

    async def get_stats_by_rule(self, rule_id: str) -> ExecutionLogStats:
        return await self._stats("rule_id", rule_id)


class PostgresNotificationRepository(_PostgresStore):
    """Persist user notifications using PostgreSQL."""

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
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, read)",
    )

    async def create(self, notification: NotificationInput) -> Notification:
        stored = Notification(**notification.model_dump())
        await self._execute(
            """
            INSERT INTO notifications
                (id, user_id, type, title, body, rule_id, rule_name, log_id, read, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            stored.id,
            stored.user_id,
            stored.type,
            stored.title,
            stored.body,
            stored.rule_id,
            stored.rule_name,
            stored.log_id,
            stored.read,
            stored.created_at,
        )
        return stored

    async def list_by_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE user_id = $1"
        if unread_only:
            query += " AND NOT read"
        records = await self._fetch(query + " ORDER BY created_at DESC", user_id)
        return [Notification(**dict(r)) for r in records]

    async def mark_read(self, notification_id: str) -> bool:
        return (
            await self._execute(
                "UPDATE notifications SET read = true WHERE id = $1", notification_id
            )
            > 0
        )

    async def mark_all_read(self, user_id: str) -> int:
        return await self._execute(
            "UPDATE notifications SET read = true WHERE user_id = $1 AND NOT read", user_id
        )
