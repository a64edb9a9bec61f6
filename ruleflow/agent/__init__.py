from .classifier import Classifier, PydanticAIClassifier, RuleCandidate
from .provider import (
    AgentRunOutput,
    PydanticAIToolProvider,
    ToolExecutionProvider,
    ToolSession,
)
from .sessions import SessionCache

__all__ = [
    "AgentRunOutput",
    "Classifier",
    "PydanticAIClassifier",
    "PydanticAIToolProvider",
    "RuleCandidate",
    "SessionCache",
    "ToolExecutionProvider",
    "ToolSession",
]
