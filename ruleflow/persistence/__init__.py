"""Persistence layer for ruleflow rules, execution logs and notifications."""

from __future__ import annotations

import os
from typing import NamedTuple, Optional

from ..config import RuleflowConfig, load_config
from .inmemory import (
    InMemoryExecutionLogRepository,
    InMemoryNotificationRepository,
    InMemoryRuleRepository,
)
from .models import ExecutionLogStats, Notification, NotificationInput
from .postgres import (
    PostgresExecutionLogRepository,
    PostgresNotificationRepository,
    PostgresRuleRepository,
)
from .repository import ExecutionLogRepository, NotificationRepository, RuleRepository
from .sqlite import (
    SQLiteExecutionLogRepository,
    SQLiteNotificationRepository,
    SQLiteRuleRepository,
)


class Repositories(NamedTuple):
    """The three stores the engine reads from and writes to."""

    rules: RuleRepository
    logs: ExecutionLogRepository
    notifications: NotificationRepository


_repositories_instance: Repositories | None = None


def get_repositories(
    database_url: Optional[str] = None, config: Optional[RuleflowConfig] = None
) -> Repositories:
    """Factory function to obtain the rule, log and notification repositories.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``RULEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, in-memory repositories are returned.
    """

    global _repositories_instance
    if _repositories_instance is not None and database_url is None and config is None:
        return _repositories_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("RULEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repositories_instance = Repositories(
            rules=InMemoryRuleRepository(),
            logs=InMemoryExecutionLogRepository(),
            notifications=InMemoryNotificationRepository(),
        )
        return _repositories_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repositories_instance = Repositories(
            rules=SQLiteRuleRepository(path),
            logs=SQLiteExecutionLogRepository(path),
            notifications=SQLiteNotificationRepository(path),
        )
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _repositories_instance = Repositories(
            rules=PostgresRuleRepository(database_url),
            logs=PostgresExecutionLogRepository(database_url),
            notifications=PostgresNotificationRepository(database_url),
        )
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repositories_instance


__all__ = [
    "ExecutionLogRepository",
    "ExecutionLogStats",
    "InMemoryExecutionLogRepository",
    "InMemoryNotificationRepository",
    "InMemoryRuleRepository",
    "Notification",
    "NotificationInput",
    "NotificationRepository",
    "PostgresExecutionLogRepository",
    "PostgresNotificationRepository",
    "PostgresRuleRepository",
    "Repositories",
    "RuleRepository",
    "SQLiteExecutionLogRepository",
    "SQLiteNotificationRepository",
    "SQLiteRuleRepository",
    "get_repositories",
]
