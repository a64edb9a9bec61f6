"""Selection and advancement of scheduled rules."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from .constants import SCHEDULE_INTERVALS
from .contracts import ExecutionRule, ScheduleInterval, utcnow

if TYPE_CHECKING:
    from .persistence.repository import RuleRepository

logger = logging.getLogger(__name__)


def interval_delta(interval: ScheduleInterval) -> timedelta:
    """Return the ``timedelta`` for a schedule interval name."""
    try:
        return SCHEDULE_INTERVALS[interval]
    except KeyError:
        raise ValueError(f"Unsupported schedule interval: {interval}") from None


def next_run_after(interval: ScheduleInterval, now: datetime) -> datetime:
    return now + interval_delta(interval)


def is_due(rule: ExecutionRule, now: datetime) -> bool:
    return rule.is_schedule_due(now)


class ScheduleSelector:
    """Find rules due for a scheduled run and advance their schedule.

    Advancement is independent of the run's outcome: a rule that failed is
    rescheduled exactly like one that succeeded.
    """

    def __init__(
        self,
        rules: "RuleRepository",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._rules = rules
        self._clock = clock

    async def due_rules(self, now: Optional[datetime] = None) -> list[ExecutionRule]:
        """Return every rule due at ``now`` (defaults to the selector's clock)."""
        now = now or self._clock()
        candidates = await self._rules.get_scheduled_rules_due(now)
        due = [rule for rule in candidates if is_due(rule, now)]
        if len(due) != len(candidates):
            logger.warning(
                f"Store returned {len(candidates) - len(due)} scheduled rules that are not due"
            )
        return due

    async def advance(
        self,
        rule_id: str,
        interval: ScheduleInterval,
        now: Optional[datetime] = None,
    ) -> datetime:
        """Record a run attempt at ``now`` and return the next run time."""
        now = now or self._clock()
        await self._rules.update_schedule_run(rule_id, interval, now=now)
        next_run = next_run_after(interval, now)
        logger.debug(f"Rule {rule_id} rescheduled for {next_run.isoformat()}")
        return next_run
