"""Trigger processing: the engine's three entry points.

``process`` handles external trigger events, ``process_manual`` runs a rule
the user picked explicitly and ``process_scheduled`` is the periodic sweep
over due rules. All three share one tail after execution: write the
execution log, notify the user, bump the execution counter and deliver the
output. Every step of that tail is best-effort.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

import httpx
from pydantic import BaseModel

from .agent.classifier import Classifier, PydanticAIClassifier
from .agent.provider import PydanticAIToolProvider, ToolExecutionProvider
from .agent.sessions import SessionCache
from .config import RuleflowConfig, load_config
from .constants import DEFAULT_NOTIFICATION_PREVIEW_CHARS
from .contracts import (
    ConversationTurn,
    ExecutionLogEntry,
    ExecutionRule,
    ManualProcessingResult,
    ProcessingResult,
    RuleExecutionResult,
    ScheduledProcessingResult,
    ScheduledRuleError,
    TriggerPayload,
    utcnow,
)
from .dispatch import OutputDispatcher
from .execute import RuleExecutor
from .matcher import RuleMatcher
from .persistence import Repositories, get_repositories
from .persistence.models import NotificationInput
from .persistence.repository import (
    ExecutionLogRepository,
    NotificationRepository,
    RuleRepository,
)
from .schedule import ScheduleSelector
from .tools.registry import default_registry

logger = logging.getLogger(__name__)

HistoryItem = Union[ConversationTurn, dict]


class SideEffectOutcome(BaseModel):
    """Result of one best-effort side effect of a rule run."""

    name: str
    ok: bool
    error: Optional[str] = None
    value: Any = None


def format_history(history: Optional[Sequence[HistoryItem]]) -> Optional[str]:
    """Flatten a conversation into ``User:``/``Assistant:`` paragraphs."""
    if not history:
        return None
    lines = []
    for item in history:
        turn = item if isinstance(item, ConversationTurn) else ConversationTurn(**item)
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    return "\n\n".join(lines)


class TriggerProcessingService:
    """Match, execute, record and deliver automation rules.

    None of the public entry points raise; unexpected errors are turned into
    a structured failure result.
    """

    def __init__(
        self,
        rules: RuleRepository,
        logs: ExecutionLogRepository,
        notifications: NotificationRepository,
        matcher: RuleMatcher,
        executor: RuleExecutor,
        dispatcher: OutputDispatcher,
        scheduler: Optional[ScheduleSelector] = None,
        clock: Callable[[], datetime] = utcnow,
        preview_chars: int = DEFAULT_NOTIFICATION_PREVIEW_CHARS,
    ) -> None:
        self.rules = rules
        self.logs = logs
        self.notifications = notifications
        self.matcher = matcher
        self.executor = executor
        self.dispatcher = dispatcher
        self.scheduler = scheduler or ScheduleSelector(rules, clock=clock)
        self._clock = clock
        self._preview_chars = preview_chars

    @classmethod
    def from_config(
        cls,
        config: Optional[RuleflowConfig] = None,
        repositories: Optional[Repositories] = None,
        provider: Optional[ToolExecutionProvider] = None,
        classifier: Optional[Classifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "TriggerProcessingService":
        """Wire a service from configuration, defaulting every collaborator."""
        repositories = repositories or get_repositories(config=config)
        config = config or load_config()
        provider = provider or PydanticAIToolProvider(
            config.agent.model, toolset_factory=default_registry.toolset_for
        )
        classifier = classifier or PydanticAIClassifier(
            config.agent.matcher_model or config.agent.model
        )
        sessions = SessionCache(
            provider, ttl=timedelta(seconds=config.agent.session_ttl_seconds)
        )
        return cls(
            rules=repositories.rules,
            logs=repositories.logs,
            notifications=repositories.notifications,
            matcher=RuleMatcher(classifier),
            executor=RuleExecutor(provider, sessions),
            dispatcher=OutputDispatcher(
                provider,
                sessions,
                http_client=http_client,
                webhook_timeout=config.dispatch.webhook_timeout,
            ),
            preview_chars=config.dispatch.notification_preview_chars,
        )

    # ------------------------------------------------------------------
    async def process(self, user_id: str, payload: TriggerPayload) -> ProcessingResult:
        """Route an external trigger event to at most one of the user's rules."""
        logger.info(f"Processing trigger {payload.trigger_slug} for user {user_id}")
        try:
            rules = await self.rules.get_active_by_user_id(user_id)
            if not rules:
                logger.info(f"User {user_id} has no active rules")
                return ProcessingResult(matched=False, executed=False)

            eligible = [r for r in rules if r.is_trigger_eligible()]
            if not eligible:
                logger.info(f"No trigger-eligible rules for user {user_id}")
                return ProcessingResult(matched=False, executed=False)

            applicable = [r for r in eligible if r.accepts_trigger(payload.trigger_slug)]
            if not applicable:
                logger.info(f"No rules accept trigger {payload.trigger_slug}")
                return ProcessingResult(matched=False, executed=False)

            logger.info(
                f"{len(applicable)} of {len(rules)} active rules accept {payload.trigger_slug}"
            )
            match = await self.matcher.match(payload, applicable)
            if not match.matched or match.rule is None:
                logger.info(f"No rule matched. Reasoning: {match.reasoning}")
                return ProcessingResult(matched=False, executed=False)

            rule = match.rule
            logger.info(f"Matched rule {rule.name!r} (confidence: {match.confidence})")
            result = await self._run(rule, payload, user_id)
            return ProcessingResult(
                matched=True,
                executed=result.success,
                rule_id=rule.id,
                rule_name=rule.name,
                error=result.error,
            )
        except Exception as e:
            logger.exception(f"Error processing trigger {payload.trigger_slug}")
            return ProcessingResult(matched=False, executed=False, error=str(e))

    async def process_manual(
        self,
        user_id: str,
        rule: ExecutionRule,
        context: str,
        history: Optional[Sequence[HistoryItem]] = None,
    ) -> ManualProcessingResult:
        """Run ``rule`` on the user's explicit request, skipping matching."""
        logger.info(f"Processing manual invocation of rule {rule.name!r} for user {user_id}")
        if not rule.is_active:
            return ManualProcessingResult(success=False, error="Rule is not active")
        if not rule.is_manual_eligible():
            return ManualProcessingResult(
                success=False, error="Rule does not support manual invocation"
            )

        try:
            payload = TriggerPayload.manual(
                user_id, context, format_history(history), now=self._clock()
            )
            result = await self._run(rule, payload, user_id)
            return ManualProcessingResult(
                success=result.success, output=result.output, error=result.error
            )
        except Exception as e:
            logger.exception(f"Error processing manual invocation of rule {rule.id}")
            return ManualProcessingResult(success=False, error=str(e))

    async def process_manual_by_id(
        self,
        user_id: str,
        rule_id: str,
        context: str,
        history: Optional[Sequence[HistoryItem]] = None,
    ) -> ManualProcessingResult:
        """Look up one of the user's rules and invoke it manually."""
        try:
            rule = await self.rules.get_by_id_and_user(rule_id, user_id)
        except Exception as e:
            logger.exception(f"Failed to load rule {rule_id}")
            return ManualProcessingResult(success=False, error=str(e))
        if rule is None:
            return ManualProcessingResult(success=False, error="Rule not found")
        return await self.process_manual(user_id, rule, context, history)

    async def process_scheduled(self) -> ScheduledProcessingResult:
        """Run every rule whose schedule is due, one after another."""
        summary = ScheduledProcessingResult()
        try:
            due = await self.scheduler.due_rules(self._clock())
        except Exception:
            logger.exception("Failed to load scheduled rules")
            return summary

        logger.info(f"Found {len(due)} scheduled rules due to run")
        for rule in due:
            summary.rules_processed += 1
            try:
                payload = TriggerPayload.scheduled(rule, now=self._clock())
                result = await self._run(
                    rule,
                    payload,
                    rule.user_id,
                    default_body="Scheduled rule executed successfully.",
                )
                if result.success:
                    summary.rules_succeeded += 1
                else:
                    summary.rules_failed += 1
                    summary.errors.append(
                        ScheduledRuleError(
                            rule_id=rule.id,
                            rule_name=rule.name,
                            error=result.error or "Unknown error",
                        )
                    )
            except Exception as e:
                logger.exception(f"Error executing scheduled rule {rule.name!r}")
                summary.rules_failed += 1
                summary.errors.append(
                    ScheduledRuleError(
                        rule_id=rule.id, rule_name=rule.name, error=str(e) or "Unknown error"
                    )
                )
            finally:
                if rule.schedule_interval is not None:
                    await self._best_effort(
                        "schedule_advance",
                        rule.id,
                        lambda: self.scheduler.advance(
                            rule.id, rule.schedule_interval, now=self._clock()
                        ),
                    )

        logger.info(
            f"Scheduled processing complete: "
            f"{summary.rules_succeeded}/{summary.rules_processed} succeeded"
        )
        return summary

    # ------------------------------------------------------------------
    async def _run(
        self,
        rule: ExecutionRule,
        payload: TriggerPayload,
        user_id: str,
        default_body: str = "Rule executed successfully.",
    ) -> RuleExecutionResult:
        started = time.monotonic()
        result = await self.executor.execute(rule, payload, user_id)
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Rule {rule.name!r} execution {'succeeded' if result.success else 'failed'}"
            f" in {duration_ms}ms"
        )
        outcomes = await self._record(rule, payload, user_id, result, duration_ms, default_body)
        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.debug(
                f"Rule {rule.id} side effects failed: "
                + ", ".join(f"{o.name} ({o.error})" for o in failed)
            )
        return result

    async def _record(
        self,
        rule: ExecutionRule,
        payload: TriggerPayload,
        user_id: str,
        result: RuleExecutionResult,
        duration_ms: int,
        default_body: str,
    ) -> List[SideEffectOutcome]:
        outcomes: List[SideEffectOutcome] = []

        entry = ExecutionLogEntry(
            rule_id=rule.id,
            rule_name=rule.name,
            user_id=user_id,
            trigger_slug=payload.trigger_slug,
            status=result.status,
            steps=result.step_results,
            output_text=result.output,
            error_text=result.error,
            duration_ms=duration_ms,
            created_at=self._clock(),
        )
        log = await self._best_effort("execution_log", rule.id, lambda: self.logs.create(entry))
        outcomes.append(log)
        log_id = log.value.id if log.ok and log.value is not None else None

        notification = self._notification_for(rule, user_id, result, default_body, log_id)
        outcomes.append(
            await self._best_effort(
                "notification", rule.id, lambda: self.notifications.create(notification)
            )
        )

        outcomes.append(
            await self._best_effort(
                "execution_count",
                rule.id,
                lambda: self.rules.increment_execution_count(rule.id, now=self._clock()),
            )
        )

        if rule.output_config.platform != "none":
            dispatch = await self._best_effort(
                "dispatch", rule.id, lambda: self.dispatcher.dispatch(rule, result, user_id)
            )
            if dispatch.ok and dispatch.value is not None and not dispatch.value.delivered:
                dispatch = SideEffectOutcome(
                    name="dispatch", ok=False, error=dispatch.value.error, value=dispatch.value
                )
            outcomes.append(dispatch)

        return outcomes

    def _notification_for(
        self,
        rule: ExecutionRule,
        user_id: str,
        result: RuleExecutionResult,
        default_body: str,
        log_id: Optional[str],
    ) -> NotificationInput:
        limit = self._preview_chars
        if result.success:
            kind = "execution_success"
            title = f"✅ {rule.name} completed"
            body = (result.output or "")[:limit] or default_body
        else:
            kind = "execution_failure"
            title = f"❌ {rule.name} failed"
            body = (result.error or "")[:limit] or "An unknown error occurred."
        return NotificationInput(
            user_id=user_id,
            type=kind,
            title=title,
            body=body,
            rule_id=rule.id,
            rule_name=rule.name,
            log_id=log_id,
        )

    async def _best_effort(
        self, name: str, rule_id: str, action: Callable[[], Awaitable[Any]]
    ) -> SideEffectOutcome:
        try:
            value = await action()
        except Exception as e:
            logger.error(f"{name} failed for rule {rule_id}: {e}")
            return SideEffectOutcome(name=name, ok=False, error=str(e) or type(e).__name__)
        return SideEffectOutcome(name=name, ok=True, value=value)


_service_instance: TriggerProcessingService | None = None


def get_service(config: Optional[RuleflowConfig] = None) -> TriggerProcessingService:
    """Return the process-wide service, building it on first use."""
    global _service_instance
    if _service_instance is not None and config is None:
        return _service_instance
    _service_instance = TriggerProcessingService.from_config(config)
    return _service_instance
