"""Shared stubs for ruleflow tests."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from ruleflow.agent.provider import AgentRunOutput, ToolSession
from ruleflow.agent.sessions import SessionCache
from ruleflow.contracts import ExecutionRule, TriggerPayload
from ruleflow.dispatch import OutputDispatcher
from ruleflow.execute import RuleExecutor
from ruleflow.matcher import RuleMatcher
from ruleflow.persistence import (
    InMemoryExecutionLogRepository,
    InMemoryNotificationRepository,
    InMemoryRuleRepository,
)
from ruleflow.service import TriggerProcessingService

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubProvider:
    """Tool-execution provider whose agent answers through ``responder``.

    ``responder(task, instructions)`` returns the final output or raises.
    """

    def __init__(
        self,
        responder: Optional[Callable[[str, Optional[str]], str]] = None,
        session_error: Optional[Exception] = None,
    ) -> None:
        self.responder = responder or (lambda task, instructions: "done")
        self.session_error = session_error
        self.sessions_created: list[str] = []
        self.runs: list[tuple[str, str, Optional[str]]] = []

    async def get_session(self, user_id: str) -> ToolSession:
        if self.session_error is not None:
            raise self.session_error
        self.sessions_created.append(user_id)
        return ToolSession(user_id=user_id)

    async def run_agent(
        self, session: ToolSession, task: str, instructions: Optional[str] = None
    ) -> AgentRunOutput:
        self.runs.append((session.user_id, task, instructions))
        return AgentRunOutput(final_output=self.responder(task, instructions))


class StubClassifier:
    """Classifier returning canned text and recording what it was shown."""

    def __init__(self, response: str | Callable[..., str] = "") -> None:
        self.response = response
        self.calls: list[tuple[str, list]] = []

    async def classify(self, trigger_summary: str, candidates) -> str:
        self.calls.append((trigger_summary, list(candidates)))
        if callable(self.response):
            return self.response(trigger_summary, list(candidates))
        return self.response


def verdict(rule_id: Optional[str], confidence: float = 0.9, reasoning: str = "fits") -> str:
    return json.dumps(
        {"matchedRuleId": rule_id, "confidence": confidence, "reasoning": reasoning}
    )


def make_rule(**overrides: Any) -> ExecutionRule:
    data: dict[str, Any] = {
        "id": f"rule_{uuid.uuid4().hex[:8]}",
        "user_id": "user_1",
        "name": "Boss emails",
        "topic_condition": "email from boss",
        "accepted_triggers": ["GMAIL_NEW_MESSAGE"],
        "execution_steps": [{"type": "instruction", "content": "summarize and notify"}],
        "created_at": START,
        "updated_at": START,
    }
    data.update(overrides)
    return ExecutionRule.model_validate(data)


def make_payload(**overrides: Any) -> TriggerPayload:
    data: dict[str, Any] = {
        "trigger_slug": "GMAIL_NEW_MESSAGE",
        "toolkit_slug": "gmail",
        "user_id": "user_1",
        "payload": {"from": "boss@co.com", "subject": "Q4"},
    }
    data.update(overrides)
    return TriggerPayload.model_validate(data)


class RecordingDispatcher:
    """Stands in for :class:`OutputDispatcher` and keeps every call."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: list[tuple[ExecutionRule, Any, str]] = []
        self.error = error

    async def dispatch(self, rule, result, user_id):
        self.calls.append((rule, result, user_id))
        if self.error is not None:
            raise self.error


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def classifier() -> StubClassifier:
    return StubClassifier()


@pytest.fixture
def rule_repo() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()


@pytest.fixture
def log_repo() -> InMemoryExecutionLogRepository:
    return InMemoryExecutionLogRepository()


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def build_service(rule_repo, log_repo, notification_repo, provider, classifier, clock):
    """Factory for a service over in-memory stores and stub agents."""

    def _build(dispatcher: Any = None, **kwargs: Any) -> TriggerProcessingService:
        sessions = SessionCache(provider, clock=clock)
        return TriggerProcessingService(
            rules=kwargs.get("rules", rule_repo),
            logs=kwargs.get("logs", log_repo),
            notifications=kwargs.get("notifications", notification_repo),
            matcher=RuleMatcher(kwargs.get("classifier", classifier)),
            executor=RuleExecutor(provider, sessions, clock=clock),
            dispatcher=dispatcher or OutputDispatcher(provider, sessions, clock=clock),
            clock=clock,
        )

    return _build
