"""Tool-execution provider: capability sessions and the agent runtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union

from pydantic import BaseModel
from pydantic_ai import Agent, Tool
from pydantic_ai.models import Model

from ..contracts import utcnow
from ..errors import ToolSessionUnavailable
from ..tools.default_prompts import RULE_EXECUTOR_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

ToolsetFactory = Callable[[str], Awaitable[Sequence[Tool]]]


@dataclass(frozen=True)
class ToolSession:
    """Stateless handle on the tools a user may invoke."""

    user_id: str
    tools: Sequence[Tool] = field(default_factory=tuple)
    created_at: datetime = field(default_factory=utcnow)


class AgentRunOutput(BaseModel):
    final_output: str


class ToolExecutionProvider(Protocol):
    """Capability broker plus LLM agent runtime."""

    async def get_session(self, user_id: str) -> ToolSession:
        """Build a fresh tool session for ``user_id``.

        Raises:
            ToolSessionUnavailable: If no session can be created.
        """

    async def run_agent(
        self, session: ToolSession, task: str, instructions: Optional[str] = None
    ) -> AgentRunOutput:
        """Run an agent limited to ``session.tools`` on ``task``."""


async def _no_tools(user_id: str) -> Sequence[Tool]:
    return ()


class PydanticAIToolProvider:
    """Provider backed by a ``pydantic_ai`` agent.

    A new ``Agent`` is built for every run so that each run sees exactly the
    tools of the session it was given.
    """

    def __init__(
        self,
        model: Union[str, Model, None],
        toolset_factory: Optional[ToolsetFactory] = None,
        name: str = "Rule Executor",
    ) -> None:
        self._model = model
        self._toolset_factory = toolset_factory or _no_tools
        self._name = name

    async def get_session(self, user_id: str) -> ToolSession:
        if self._model is None:
            logger.warning("No agent model configured; tool sessions are unavailable")
            raise ToolSessionUnavailable("Tool execution service not configured")
        try:
            tools = await self._toolset_factory(user_id)
        except Exception as e:
            logger.error(f"Failed to create tool session for user {user_id}: {e}")
            raise ToolSessionUnavailable(f"Failed to create tool session: {e}") from e
        logger.debug(f"Created tool session for user {user_id} with {len(tools)} tools")
        return ToolSession(user_id=user_id, tools=tuple(tools))

    async def run_agent(
        self, session: ToolSession, task: str, instructions: Optional[str] = None
    ) -> AgentRunOutput:
        agent = Agent(
            self._model,
            instructions=instructions or RULE_EXECUTOR_SYSTEM_PROMPT,
            tools=list(session.tools),
            name=self._name,
        )
        result = await agent.run(task)
        output = result.output
        return AgentRunOutput(final_output="" if output is None else str(output))
