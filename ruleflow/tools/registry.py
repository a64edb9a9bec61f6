"""Toolkit-keyed registry of tools exposed to the executor agent."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from pydantic_ai import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Holds the tools each integration toolkit contributes.

    Users may be restricted to the toolkits they have connected; a user with
    no recorded connections sees every registered toolkit.
    """

    def __init__(self) -> None:
        self._toolkits: Dict[str, List[Tool]] = {}
        self._connections: Dict[str, Set[str]] = {}

    def register(
        self, toolkit: str, func: Callable | Tool, name: Optional[str] = None
    ) -> Tool:
        """Add a tool to ``toolkit`` and return it."""
        tool = func if isinstance(func, Tool) else Tool(func, name=name)
        self._toolkits.setdefault(toolkit, []).append(tool)
        logger.debug(f"Registered tool {tool.name} in toolkit {toolkit}")
        return tool

    def tool(self, toolkit: str, name: Optional[str] = None) -> Callable:
        """Decorator form of :meth:`register`."""

        def decorator(func: Callable) -> Callable:
            self.register(toolkit, func, name=name)
            return func

        return decorator

    def connect(self, user_id: str, toolkits: Iterable[str]) -> None:
        """Record the toolkits ``user_id`` has connected."""
        self._connections.setdefault(user_id, set()).update(toolkits)

    @property
    def toolkits(self) -> list[str]:
        return sorted(self._toolkits)

    async def toolset_for(self, user_id: str) -> list[Tool]:
        """Return the tools available to ``user_id``."""
        allowed = self._connections.get(user_id)
        return [
            tool
            for toolkit, tools in self._toolkits.items()
            if allowed is None or toolkit in allowed
            for tool in tools
        ]


default_registry = ToolRegistry()
