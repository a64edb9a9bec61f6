"""Classifier used by the rule matcher to pick a rule for an event."""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, Union

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.models import Model

from ..errors import RuleflowError
from ..tools.default_prompts import RULE_MATCHER_SYSTEM_PROMPT, build_rule_matcher_prompt

logger = logging.getLogger(__name__)


class RuleCandidate(BaseModel):
    """The part of a rule the classifier gets to see."""

    id: str
    name: str
    topic_condition: str


class Classifier(Protocol):
    async def classify(
        self, trigger_summary: str, candidates: Sequence[RuleCandidate]
    ) -> str:
        """Return raw classifier text naming the first satisfied rule, if any."""


class PydanticAIClassifier:
    """Classifier backed by a text-output ``pydantic_ai`` agent."""

    def __init__(
        self,
        model: Union[str, Model, None],
        instructions: Optional[str] = None,
    ) -> None:
        self._model = model
        self._instructions = instructions or RULE_MATCHER_SYSTEM_PROMPT

    async def classify(
        self, trigger_summary: str, candidates: Sequence[RuleCandidate]
    ) -> str:
        if self._model is None:
            raise RuleflowError("Rule classifier not configured")
        prompt = build_rule_matcher_prompt(trigger_summary, candidates)
        logger.debug(f"Classifier prompt:\n{prompt}")
        agent = Agent(self._model, instructions=self._instructions, output_type=str)
        result = await agent.run(prompt)
        return result.output
