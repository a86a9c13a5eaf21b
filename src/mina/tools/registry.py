"""Name-indexed collection of tools offered to the model."""

import logging
from typing import Any, Iterator

from .base import Tool, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Holds tools by name and runs model-requested calls.

    ``dispatch`` never raises: unknown names, bad arguments and tool
    exceptions all come back as failed ``ToolResult`` values so the model
    can see what went wrong.
    """

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_tools_schema(self) -> list[dict[str, Any]]:
        return [tool.get_schema() for tool in self]

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(
        self, tool_name: str, args: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        """Run ``tool_name`` with model-supplied ``args`` on behalf of ``context``."""
        tool = self._tools.get(tool_name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {tool_name}")
            return ToolResult.failure(f"Unknown tool: {tool_name}")

        error = tool.check_args(args)
        if error:
            logger.debug(f"Rejected {tool_name} call for user {context.user_id}: {error}")
            return ToolResult.failure(error)

        try:
            return await tool.execute(context, **args)
        except Exception as e:
            logger.warning(f"Tool {tool_name} failed for user {context.user_id}: {e}")
            return ToolResult.failure(f"Tool execution failed: {e}")
