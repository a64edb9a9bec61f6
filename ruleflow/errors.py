"""Exception hierarchy for ruleflow."""

from __future__ import annotations


class RuleflowError(Exception):
    """Base class for engine errors."""


class ToolSessionUnavailable(RuleflowError):
    """No tool-execution session could be acquired for a user.

    Terminal for a single rule execution: no step is attempted.
    """


class ClassifierResponseError(RuleflowError):
    """The classifier returned text that could not be parsed."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class StoreError(RuleflowError):
    """A persistence backend rejected an operation."""
