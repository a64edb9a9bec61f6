from datetime import timedelta

import pytest
from pydantic import ValidationError

from conftest import START, make_rule
from ruleflow.contracts import (
    ActionStep,
    ExecutionStatus,
    InstructionStep,
    RuleInput,
    StepResult,
    TriggerPayload,
)


def test_steps_parse_as_tagged_union():
    rule = RuleInput.model_validate(
        {
            "name": "mixed",
            "execution_steps": [
                {"type": "instruction", "content": "summarize"},
                {"type": "action", "tool_name": "SLACK_SEND", "parameters": {"channel": "#a"}},
            ],
        }
    )
    first, second = rule.execution_steps
    assert isinstance(first, InstructionStep)
    assert isinstance(second, ActionStep)
    assert second.parameters == {"channel": "#a"}


def test_unknown_step_type_is_rejected():
    with pytest.raises(ValidationError):
        RuleInput.model_validate(
            {"name": "bad", "execution_steps": [{"type": "teleport", "content": "x"}]}
        )


def test_schedule_enabled_requires_interval():
    with pytest.raises(ValidationError):
        RuleInput(name="sched", schedule_enabled=True)
    assert RuleInput(name="sched", schedule_enabled=True, schedule_interval="daily")


@pytest.mark.parametrize(
    "mode, trigger, manual",
    [
        ("trigger", True, False),
        ("manual", False, True),
        ("scheduled", False, False),
        ("all", True, True),
    ],
)
def test_activation_mode_eligibility(mode, trigger, manual):
    rule = make_rule(activation_mode=mode)
    assert rule.is_trigger_eligible() is trigger
    assert rule.is_manual_eligible() is manual


def test_inactive_rule_is_never_eligible():
    rule = make_rule(activation_mode="all", is_active=False)
    assert not rule.is_trigger_eligible()
    assert not rule.is_manual_eligible()


def test_empty_accepted_triggers_accepts_everything():
    assert make_rule(accepted_triggers=[]).accepts_trigger("ANYTHING")
    rule = make_rule(accepted_triggers=["GMAIL_NEW_MESSAGE"])
    assert rule.accepts_trigger("GMAIL_NEW_MESSAGE")
    assert not rule.accepts_trigger("SLACK_MESSAGE")


def test_schedule_due():
    base = dict(activation_mode="scheduled", schedule_enabled=True, schedule_interval="hourly")
    assert make_rule(**base).is_schedule_due(START)
    assert make_rule(**base, schedule_next_run=START).is_schedule_due(START)
    assert not make_rule(
        **base, schedule_next_run=START + timedelta(minutes=1)
    ).is_schedule_due(START)
    assert not make_rule(**{**base, "activation_mode": "trigger"}).is_schedule_due(START)


def test_status_classification():
    ok = StepResult(step_index=0, type="instruction", success=True, result="a")
    bad = StepResult(step_index=1, type="instruction", success=False, error="b")
    assert ExecutionStatus.from_steps(True, [ok]) == ExecutionStatus.SUCCESS
    assert ExecutionStatus.from_steps(False, [ok, bad]) == ExecutionStatus.PARTIAL
    assert ExecutionStatus.from_steps(False, [bad]) == ExecutionStatus.FAILURE
    assert ExecutionStatus.from_steps(False, []) == ExecutionStatus.FAILURE


def test_manual_payload_carries_context_and_history():
    payload = TriggerPayload.manual("user_1", "draft a reply", "User: hi", now=START)
    assert payload.trigger_slug == "MANUAL_INVOCATION"
    assert payload.toolkit_slug == "manual"
    assert payload.event_body() == {
        "userContext": "draft a reply",
        "invokedAt": START.isoformat(),
        "conversationHistory": "User: hi",
    }
    assert payload.metadata.connected_account_id == "user_1"


def test_scheduled_payload():
    rule = make_rule(activation_mode="scheduled", schedule_enabled=True, schedule_interval="daily")
    payload = TriggerPayload.scheduled(rule, now=START)
    assert payload.trigger_slug == "SCHEDULED_EXECUTION"
    assert payload.user_id == rule.user_id
    assert payload.event_body() == {"scheduledAt": START.isoformat(), "interval": "daily"}


def test_event_body_falls_back_to_original_payload():
    payload = TriggerPayload(
        trigger_slug="X", toolkit_slug="x", user_id="u", original_payload={"raw": 1}
    )
    assert payload.event_body() == {"raw": 1}
