"""Semantic rule matching for incoming trigger events."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .agent.classifier import Classifier, RuleCandidate
from .contracts import ExecutionRule, RuleMatchResult, TriggerPayload
from .errors import ClassifierResponseError
from .tools.default_prompts import build_trigger_context

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_VERDICT_OBJECT = re.compile(r'\{[\s\S]*?"matchedRuleId"[\s\S]*?\}')


class ClassifierVerdict(BaseModel):
    """Structured form of the classifier's answer."""

    model_config = ConfigDict(populate_by_name=True)

    matched_rule_id: Optional[str] = Field(alias="matchedRuleId")
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("confidence", "reasoning", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any, info) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


def _try_verdict(text: str) -> ClassifierVerdict | None:
    try:
        data: Any = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        return ClassifierVerdict.model_validate(data)
    except ValidationError:
        return None


def parse_classifier_response(text: str) -> ClassifierVerdict:
    """Parse classifier text into a :class:`ClassifierVerdict`.

    Tries, in order: the whole text as JSON, the first fenced code block, and
    the first ``{...}`` object mentioning ``matchedRuleId``.

    Raises:
        ClassifierResponseError: If none of the strategies yields a verdict.
    """
    verdict = _try_verdict(text.strip())
    if verdict is not None:
        return verdict

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        verdict = _try_verdict(fenced.group(1).strip())
        if verdict is not None:
            return verdict

    embedded = _VERDICT_OBJECT.search(text)
    if embedded:
        verdict = _try_verdict(embedded.group(0))
        if verdict is not None:
            return verdict

    raise ClassifierResponseError("Classifier response is not a recognizable verdict", raw=text)


class RuleMatcher:
    """Pick at most one rule for a trigger by asking the classifier.

    Candidates are presented highest priority first and the classifier is
    told to answer with the first rule whose condition holds. Any failure
    along the way is a non-match.
    """

    def __init__(self, classifier: Classifier) -> None:
        self._classifier = classifier

    async def match(
        self, payload: TriggerPayload, rules: Sequence[ExecutionRule]
    ) -> RuleMatchResult:
        if not rules:
            return RuleMatchResult(matched=False, reasoning="No rules to match against")

        ordered = sorted(rules, key=lambda r: r.priority, reverse=True)
        candidates = [
            RuleCandidate(id=r.id, name=r.name, topic_condition=r.topic_condition)
            for r in ordered
        ]
        trigger_summary = build_trigger_context(
            payload.trigger_slug, payload.toolkit_slug, payload.event_body()
        )

        try:
            raw = await self._classifier.classify(trigger_summary, candidates)
        except Exception as e:
            logger.error(f"Rule classification failed for {payload.trigger_slug}: {e}")
            return RuleMatchResult(matched=False, reasoning=f"Error during matching: {e}")

        if not raw or not raw.strip():
            logger.error("Classifier returned an empty response")
            return RuleMatchResult(matched=False, reasoning="Invalid classifier response")

        try:
            verdict = parse_classifier_response(raw)
        except ClassifierResponseError:
            logger.error(f"Failed to parse classifier response: {raw}")
            return RuleMatchResult(
                matched=False, reasoning="Failed to parse classifier response"
            )

        if verdict.matched_rule_id is None:
            return RuleMatchResult(
                matched=False, confidence=verdict.confidence, reasoning=verdict.reasoning
            )

        rule = next((r for r in ordered if r.id == verdict.matched_rule_id), None)
        if rule is None:
            logger.warning(
                f"Classifier named rule {verdict.matched_rule_id} which is not a candidate"
            )
            return RuleMatchResult(
                matched=False,
                confidence=verdict.confidence,
                reasoning=f"Unknown rule id {verdict.matched_rule_id}: {verdict.reasoning}",
            )

        return RuleMatchResult(
            matched=True,
            rule=rule,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
        )
