from .default_prompts import (
    ACTION_EXECUTOR_SYSTEM_PROMPT,
    RULE_EXECUTOR_SYSTEM_PROMPT,
    RULE_MATCHER_SYSTEM_PROMPT,
    build_action_directive,
    build_rule_executor_prompt,
    build_rule_matcher_prompt,
    build_trigger_context,
)
from .registry import ToolRegistry, default_registry

__all__ = [
    "ACTION_EXECUTOR_SYSTEM_PROMPT",
    "RULE_EXECUTOR_SYSTEM_PROMPT",
    "RULE_MATCHER_SYSTEM_PROMPT",
    "ToolRegistry",
    "build_action_directive",
    "build_rule_executor_prompt",
    "build_rule_matcher_prompt",
    "build_trigger_context",
    "default_registry",
]
