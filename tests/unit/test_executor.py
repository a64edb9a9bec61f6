import pytest

from conftest import StubProvider, make_payload, make_rule
from ruleflow.contracts import ExecutionStatus
from ruleflow.errors import ToolSessionUnavailable
from ruleflow.execute import RuleExecutor
from ruleflow.tools.default_prompts import (
    ACTION_EXECUTOR_SYSTEM_PROMPT,
    RULE_EXECUTOR_SYSTEM_PROMPT,
)


def _steps(*contents):
    return [{"type": "instruction", "content": c} for c in contents]


def _scripted(outputs):
    """Responder that maps an instruction's text to an output or an exception."""

    def respond(task, instructions):
        for key, value in outputs.items():
            if f"## Current Step\n{key}" in task:
                if isinstance(value, Exception):
                    raise value
                return value
        return "unexpected"

    return respond


@pytest.mark.asyncio
async def test_continue_on_error(clock):
    provider = StubProvider(
        _scripted({"A": "alpha", "B": RuntimeError("tool exploded"), "C": "gamma"})
    )
    rule = make_rule(execution_steps=_steps("A", "B", "C"))

    result = await RuleExecutor(provider, clock=clock).execute(rule, make_payload(), "user_1")

    assert len(result.step_results) == 3
    assert [s.success for s in result.step_results] == [True, False, True]
    assert not result.success
    assert result.status == ExecutionStatus.PARTIAL
    assert result.output == "alpha\n\ngamma"
    assert result.error == "tool exploded"
    assert result.step_results[1].error == "tool exploded"
    assert result.executed_at == clock.now


@pytest.mark.asyncio
async def test_previous_results_reach_later_steps():
    provider = StubProvider(_scripted({"first": "found 3 emails", "second": "sent"}))
    rule = make_rule(execution_steps=_steps("first", "second"))

    await RuleExecutor(provider).execute(rule, make_payload(), "user_1")

    first_task, second_task = provider.runs[0][1], provider.runs[1][1]
    assert "Previous Step Results" not in first_task
    assert "Step 1: found 3 emails" in second_task
    assert "Automation Rule: Boss emails" in second_task
    assert "boss@co.com" in second_task
    assert provider.runs[0][2] == RULE_EXECUTOR_SYSTEM_PROMPT


@pytest.mark.asyncio
async def test_action_step_directive():
    provider = StubProvider(lambda task, instructions: "")
    rule = make_rule(
        execution_steps=[
            {
                "type": "action",
                "tool_name": "SLACK_SEND_MESSAGE",
                "parameters": {"channel": "#team", "text": "hi"},
            }
        ]
    )

    result = await RuleExecutor(provider).execute(rule, make_payload(), "user_1")

    _, task, instructions = provider.runs[0]
    assert 'Call the tool "SLACK_SEND_MESSAGE"' in task
    assert '"channel": "#team"' in task
    assert instructions == ACTION_EXECUTOR_SYSTEM_PROMPT
    assert result.success
    assert result.step_results[0].type == "action"
    assert result.step_results[0].result == "Action completed"
    assert result.output == "Action completed"


@pytest.mark.asyncio
async def test_empty_instruction_output_is_recorded_as_completed():
    provider = StubProvider(lambda task, instructions: "")
    result = await RuleExecutor(provider).execute(make_rule(), make_payload(), "user_1")
    assert result.step_results[0].result == "Step completed"


@pytest.mark.asyncio
async def test_unknown_step_type_fails_only_that_step():
    provider = StubProvider(lambda task, instructions: "ok")
    rule = make_rule(execution_steps=_steps("A", "B"))
    # bypass validation to simulate a step the engine does not know
    rule.execution_steps.insert(1, object())

    result = await RuleExecutor(provider).execute(rule, make_payload(), "user_1")

    assert [s.success for s in result.step_results] == [True, False, True]
    assert result.step_results[1].error == "Unknown step type"
    assert result.step_results[1].step_index == 1
    assert len(provider.runs) == 2


@pytest.mark.asyncio
async def test_session_failure_is_terminal():
    provider = StubProvider(
        session_error=ToolSessionUnavailable("Tool execution service not configured")
    )
    result = await RuleExecutor(provider).execute(make_rule(), make_payload(), "user_1")

    assert not result.success
    assert result.step_results == []
    assert result.error == "Tool execution service not configured"
    assert result.status == ExecutionStatus.FAILURE
    assert provider.runs == []


@pytest.mark.asyncio
async def test_sessions_are_reused_per_user():
    provider = StubProvider()
    executor = RuleExecutor(provider)
    await executor.execute(make_rule(), make_payload(), "user_1")
    await executor.execute(make_rule(), make_payload(), "user_1")
    await executor.execute(make_rule(), make_payload(), "user_2")
    assert provider.sessions_created == ["user_1", "user_2"]


@pytest.mark.asyncio
async def test_rule_without_steps_succeeds_with_empty_output():
    result = await RuleExecutor(StubProvider()).execute(
        make_rule(execution_steps=[]), make_payload(), "user_1"
    )
    assert result.success
    assert result.output == ""
    assert result.status == ExecutionStatus.SUCCESS
