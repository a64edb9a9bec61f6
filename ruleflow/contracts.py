"""Core data contracts for the ruleflow automation engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    MANUAL_TOOLKIT_SLUG,
    MANUAL_TRIGGER_SLUG,
    SCHEDULED_TOOLKIT_SLUG,
    SCHEDULED_TRIGGER_SLUG,
)


ActivationMode = Literal["trigger", "manual", "scheduled", "all"]
ScheduleInterval = Literal["15min", "hourly", "daily", "weekly"]
OutputPlatform = Literal["slack", "gmail", "webhook", "none"]
OutputFormat = Literal["summary", "detailed", "raw"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutputConfig(BaseModel):
    """Where and how to deliver a rule's execution result."""

    platform: OutputPlatform = "none"
    destination: Optional[str] = Field(
        default=None, description="Channel id, email address or webhook URL"
    )
    format: OutputFormat = "summary"
    template: Optional[str] = Field(
        default=None, description="Message template with a {{result}} placeholder"
    )


class InstructionStep(BaseModel):
    """Natural-language task interpreted by the agent runtime."""

    type: Literal["instruction"] = "instruction"
    content: str


class ActionStep(BaseModel):
    """Direct invocation of a named tool with fixed parameters."""

    type: Literal["action"] = "action"
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


ExecutionStep = Annotated[
    Union[InstructionStep, ActionStep], Field(discriminator="type")
]


class RuleInput(BaseModel):
    """User-editable part of an execution rule."""

    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    accepted_triggers: List[str] = Field(default_factory=list)
    topic_condition: str = ""
    execution_steps: List[ExecutionStep] = Field(default_factory=list)
    output_config: OutputConfig = Field(default_factory=OutputConfig)
    activation_mode: ActivationMode = "trigger"
    schedule_enabled: bool = False
    schedule_interval: Optional[ScheduleInterval] = None

    @model_validator(mode="after")
    def _require_interval_when_scheduled(self):
        if self.schedule_enabled and self.schedule_interval is None:
            raise ValueError("schedule_interval is required when schedule_enabled is set")
        return self


class ExecutionRule(RuleInput):
    """A stored, user-owned automation rule."""

    id: str
    user_id: str
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    schedule_last_run: Optional[datetime] = None
    schedule_next_run: Optional[datetime] = None

    @field_validator(
        "last_executed_at",
        "created_at",
        "updated_at",
        "schedule_last_run",
        "schedule_next_run",
    )
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def accepts_trigger(self, trigger_slug: str) -> bool:
        """An empty ``accepted_triggers`` list accepts every trigger."""
        if not self.accepted_triggers:
            return True
        return trigger_slug in self.accepted_triggers

    def is_trigger_eligible(self) -> bool:
        return self.is_active and self.activation_mode in ("trigger", "all")

    def is_manual_eligible(self) -> bool:
        return self.is_active and self.activation_mode in ("manual", "all")

    def is_schedule_due(self, now: datetime) -> bool:
        """Return ``True`` when the rule should run in a scheduled sweep at ``now``.

        A rule that has never been scheduled (no ``schedule_next_run``) is due
        immediately.
        """
        if not (
            self.is_active
            and self.schedule_enabled
            and self.activation_mode in ("scheduled", "all")
        ):
            return False
        return self.schedule_next_run is None or self.schedule_next_run <= now


class ConversationTurn(BaseModel):
    role: str
    content: str


class TriggerMetadata(BaseModel):
    """Optional event metadata, mostly the originating connected account."""

    model_config = ConfigDict(frozen=True)

    connected_account_id: Optional[str] = None


class TriggerPayload(BaseModel):
    """Immutable description of an incoming event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    trigger_slug: str
    toolkit_slug: str
    user_id: str
    payload: Optional[Dict[str, Any]] = None
    original_payload: Optional[Dict[str, Any]] = None
    metadata: TriggerMetadata = Field(default_factory=TriggerMetadata)

    def event_body(self) -> Dict[str, Any]:
        """Normalized body, falling back to the raw one."""
        return self.payload or self.original_payload or {}

    @classmethod
    def manual(
        cls,
        user_id: str,
        context: str,
        history_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "TriggerPayload":
        """Build the synthetic payload used for a manual invocation."""
        now = now or utcnow()
        body: Dict[str, Any] = {"userContext": context, "invokedAt": now.isoformat()}
        original: Dict[str, Any] = {"userContext": context}
        if history_text:
            body["conversationHistory"] = history_text
            original["conversationHistory"] = history_text
        return cls(
            id=f"manual_{uuid.uuid4().hex}",
            trigger_slug=MANUAL_TRIGGER_SLUG,
            toolkit_slug=MANUAL_TOOLKIT_SLUG,
            user_id=user_id,
            payload=body,
            original_payload=original,
            metadata=TriggerMetadata(connected_account_id=user_id),
        )

    @classmethod
    def scheduled(
        cls, rule: ExecutionRule, now: Optional[datetime] = None
    ) -> "TriggerPayload":
        """Build the synthetic payload used for a scheduled run of ``rule``."""
        now = now or utcnow()
        return cls(
            id=f"scheduled_{uuid.uuid4().hex}",
            trigger_slug=SCHEDULED_TRIGGER_SLUG,
            toolkit_slug=SCHEDULED_TOOLKIT_SLUG,
            user_id=rule.user_id,
            payload={"scheduledAt": now.isoformat(), "interval": rule.schedule_interval},
            original_payload={"scheduledAt": now.isoformat()},
            metadata=TriggerMetadata(connected_account_id=rule.user_id),
        )


class StepResult(BaseModel):
    """Outcome of a single executed step."""

    step_index: int
    type: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"

    @classmethod
    def from_steps(cls, success: bool, step_results: Sequence[StepResult]) -> "ExecutionStatus":
        """``partial`` iff there is at least one success and one failure."""
        if success:
            return cls.SUCCESS
        if any(s.success for s in step_results) and any(
            not s.success for s in step_results
        ):
            return cls.PARTIAL
        return cls.FAILURE


class RuleExecutionResult(BaseModel):
    """Aggregate outcome of running one rule's steps."""

    success: bool
    rule_id: str
    rule_name: str
    trigger_slug: str
    step_results: List[StepResult] = Field(default_factory=list)
    output: Optional[str] = None
    error: Optional[str] = None
    executed_at: datetime = Field(default_factory=utcnow)

    @property
    def status(self) -> ExecutionStatus:
        return ExecutionStatus.from_steps(self.success, self.step_results)


class ExecutionLogEntry(BaseModel):
    """Immutable record of one execution attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"log_{uuid.uuid4().hex}")
    rule_id: str
    rule_name: str
    user_id: str
    trigger_slug: str
    status: ExecutionStatus
    steps: List[StepResult] = Field(default_factory=list)
    output_text: Optional[str] = None
    error_text: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class RuleMatchResult(BaseModel):
    """Matcher verdict; consumed immediately, never persisted."""

    matched: bool
    rule: Optional[ExecutionRule] = None
    confidence: Optional[float] = None
    reasoning: str = ""


class ProcessingResult(BaseModel):
    matched: bool
    executed: bool
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    error: Optional[str] = None


class ManualProcessingResult(BaseModel):
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None


class ScheduledRuleError(BaseModel):
    rule_id: str
    rule_name: str
    error: str


class ScheduledProcessingResult(BaseModel):
    rules_processed: int = 0
    rules_succeeded: int = 0
    rules_failed: int = 0
    errors: List[ScheduledRuleError] = Field(default_factory=list)
