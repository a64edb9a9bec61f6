"""Shared constants for the ruleflow engine."""

from __future__ import annotations

from datetime import timedelta

MANUAL_TRIGGER_SLUG = "MANUAL_INVOCATION"
SCHEDULED_TRIGGER_SLUG = "SCHEDULED_EXECUTION"

MANUAL_TOOLKIT_SLUG = "manual"
SCHEDULED_TOOLKIT_SLUG = "scheduled"

DEFAULT_SESSION_TTL_SECONDS = 60 * 60
DEFAULT_NOTIFICATION_PREVIEW_CHARS = 200
DEFAULT_WEBHOOK_TIMEOUT = 10.0

SCHEDULE_INTERVALS: dict[str, timedelta] = {
    "15min": timedelta(minutes=15),
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}
