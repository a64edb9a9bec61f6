"""Ruleflow: semantic automation rules executed by AI agents."""

from .agent import PydanticAIClassifier, PydanticAIToolProvider, SessionCache
from .contracts import (
    ActionStep,
    ExecutionRule,
    InstructionStep,
    OutputConfig,
    RuleExecutionResult,
    RuleInput,
    TriggerPayload,
)
from .dispatch import OutputDispatcher
from .execute import RuleExecutor
from .matcher import RuleMatcher
from .persistence import get_repositories
from .schedule import ScheduleSelector
from .service import TriggerProcessingService, get_service

__version__ = "0.1.0"
__all__ = [
    "ActionStep",
    "ExecutionRule",
    "InstructionStep",
    "OutputConfig",
    "OutputDispatcher",
    "PydanticAIClassifier",
    "PydanticAIToolProvider",
    "RuleExecutionResult",
    "RuleExecutor",
    "RuleInput",
    "RuleMatcher",
    "ScheduleSelector",
    "SessionCache",
    "TriggerPayload",
    "TriggerProcessingService",
    "get_repositories",
    "get_service",
]
