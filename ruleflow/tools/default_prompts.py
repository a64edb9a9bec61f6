from __future__ import annotations

import json
from typing import Any, Dict, Sequence

RULE_MATCHER_SYSTEM_PROMPT = """You route incoming trigger events to automation rules.

You receive a trigger event (type, source and payload) and a list of rules.
Each rule has a "topic condition" describing when it should run. The rules are
listed by priority, highest first.

Evaluate the conditions in the order given and return the id of the FIRST rule
whose condition is satisfied by the event, or null when none is.

Guidelines:
- Match on meaning, not on exact keywords.
- A rule matches only when the event is clearly relevant to its condition.
- Related concepts count (an email from a company domain is a "work email").

Respond with JSON only:
{"matchedRuleId": "<rule id>" | null, "confidence": <0.0-1.0>, "reasoning": "<one sentence>"}"""

RULE_EXECUTOR_SYSTEM_PROMPT = """You execute one step of an automation rule.

You are given the event that started the automation, the results of earlier
steps and the instruction for the current step. Use the available tools to
carry out the instruction.

- Take the data you need (sender, thread id, message text, ...) from the event payload.
- When replying to an email event, reply in its thread instead of starting a new email.
- Do not make tool calls the instruction does not need.

Finish with a short summary of what you did."""

ACTION_EXECUTOR_SYSTEM_PROMPT = (
    "You are a tool executor. When given a tool name and parameters, call that "
    "exact tool immediately with the provided parameters. Do not modify the parameters."
)

SLACK_SENDER_SYSTEM_PROMPT = "Send the provided message to the specified Slack channel."

GMAIL_SENDER_SYSTEM_PROMPT = "Send the provided email to the specified recipient."


def build_trigger_context(
    trigger_slug: str, toolkit_slug: str, payload: Dict[str, Any]
) -> str:
    """Describe a trigger event for a model prompt."""
    return (
        "## Trigger Event\n"
        f"- Type: {trigger_slug} (from {toolkit_slug})\n"
        "- Payload:\n"
        f"{json.dumps(payload, indent=2, default=str)}\n"
    )


def build_rule_matcher_prompt(trigger_context: str, candidates: Sequence[Any]) -> str:
    """Combine the trigger context and the candidate rules into one request."""
    rules = "\n".join(
        f"### Rule {index}: {candidate.name}\n"
        f"- ID: {candidate.id}\n"
        f'- Topic Condition: "{candidate.topic_condition}"\n'
        for index, candidate in enumerate(candidates, start=1)
    )
    return (
        f"{trigger_context}\n"
        "## Available Rules (sorted by priority, highest first)\n"
        f"{rules}\n"
        "Analyze the trigger event and determine which rule (if any) should handle it. "
        "Return your response as JSON."
    )


def build_rule_executor_prompt(
    rule_name: str,
    trigger_context: str,
    step_content: str,
    previous_results: Sequence[str],
) -> str:
    """Task text for an instruction step."""
    previous = ""
    if previous_results:
        lines = "\n".join(
            f"Step {i}: {result}" for i, result in enumerate(previous_results, start=1)
        )
        previous = f"## Previous Step Results\n{lines}\n\n"
    return (
        f"## Automation Rule: {rule_name}\n\n"
        f"{trigger_context}\n"
        f"{previous}"
        f"## Current Step\n{step_content}\n\n"
        "Execute this step using the available tools. Be direct and efficient."
    )


def build_action_directive(tool_name: str, parameters: Dict[str, Any]) -> str:
    """Task text forcing a single tool call with fixed parameters."""
    return (
        f'Call the tool "{tool_name}" with these exact parameters: '
        f"{json.dumps(parameters, default=str)}. Execute this tool call immediately "
        "and do not change any parameter."
    )


def build_slack_delivery_task(channel: str, message: str) -> str:
    return f"Send this message to channel {channel}: {message}"


def build_gmail_delivery_task(to: str, rule_name: str, body: str) -> str:
    return (
        f'Send an email to {to} with subject "Automation Result: {rule_name}" '
        f"and body: {body}"
    )
