"""Rule execution engine for ruleflow."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .agent.provider import ToolExecutionProvider, ToolSession
from .agent.sessions import SessionCache
from .contracts import (
    ActionStep,
    ExecutionRule,
    InstructionStep,
    RuleExecutionResult,
    StepResult,
    TriggerPayload,
    utcnow,
)
from .tools.default_prompts import (
    ACTION_EXECUTOR_SYSTEM_PROMPT,
    RULE_EXECUTOR_SYSTEM_PROMPT,
    build_action_directive,
    build_rule_executor_prompt,
    build_trigger_context,
)

logger = logging.getLogger(__name__)

OUTPUT_SEPARATOR = "\n\n"


class RuleExecutor:
    """Runs a rule's steps, in order, through the tool-execution provider.

    A failing step is recorded and execution moves on to the next one. Only
    a missing tool session stops a run before its first step.
    """

    def __init__(
        self,
        provider: ToolExecutionProvider,
        sessions: Optional[SessionCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self._sessions = sessions or SessionCache(provider, clock=clock)
        self._clock = clock

    async def execute(
        self, rule: ExecutionRule, payload: TriggerPayload, user_id: str
    ) -> RuleExecutionResult:
        """Execute every step of ``rule`` for ``payload`` on behalf of ``user_id``."""
        executed_at = self._clock()
        logger.info(
            f"Executing rule {rule.name!r} ({len(rule.execution_steps)} steps) for user {user_id}"
        )

        try:
            session = await self._sessions.acquire(user_id)
        except Exception as e:
            logger.error(f"No tool session for user {user_id}: {e}")
            return RuleExecutionResult(
                success=False,
                rule_id=rule.id,
                rule_name=rule.name,
                trigger_slug=payload.trigger_slug,
                step_results=[],
                error=str(e) or "Tool execution service not configured",
                executed_at=executed_at,
            )

        trigger_context = build_trigger_context(
            payload.trigger_slug, payload.toolkit_slug, payload.event_body()
        )
        step_results: List[StepResult] = []
        previous_results: List[str] = []

        for index, step in enumerate(rule.execution_steps):
            result = await self._execute_step(
                step, index, rule, trigger_context, session, previous_results
            )
            step_results.append(result)
            if result.success and result.result:
                previous_results.append(str(result.result))

        success = all(r.success for r in step_results)
        error = None
        if not success:
            error = next(r.error for r in step_results if not r.success)

        logger.info(
            f"Rule {rule.name!r} finished: "
            f"{sum(r.success for r in step_results)}/{len(step_results)} steps succeeded"
        )
        return RuleExecutionResult(
            success=success,
            rule_id=rule.id,
            rule_name=rule.name,
            trigger_slug=payload.trigger_slug,
            step_results=step_results,
            output=OUTPUT_SEPARATOR.join(previous_results),
            error=error,
            executed_at=executed_at,
        )

    async def _execute_step(
        self,
        step: object,
        index: int,
        rule: ExecutionRule,
        trigger_context: str,
        session: ToolSession,
        previous_results: List[str],
    ) -> StepResult:
        if isinstance(step, InstructionStep):
            task = build_rule_executor_prompt(
                rule.name, trigger_context, step.content, previous_results
            )
            instructions = RULE_EXECUTOR_SYSTEM_PROMPT
            fallback = "Step completed"
        elif isinstance(step, ActionStep):
            task = build_action_directive(step.tool_name, step.parameters)
            instructions = ACTION_EXECUTOR_SYSTEM_PROMPT
            fallback = "Action completed"
        else:
            logger.error(f"Rule {rule.id} step {index} has unknown type {step!r}")
            return StepResult(
                step_index=index,
                type=str(getattr(step, "type", "unknown")),
                success=False,
                error="Unknown step type",
            )

        try:
            run = await self._provider.run_agent(session, task, instructions=instructions)
        except Exception as e:
            logger.error(f"Rule {rule.id} {step.type} step {index} failed: {e}")
            return StepResult(
                step_index=index,
                type=step.type,
                success=False,
                error=str(e) or type(e).__name__,
            )

        return StepResult(
            step_index=index,
            type=step.type,
            success=True,
            result=run.final_output or fallback,
        )
