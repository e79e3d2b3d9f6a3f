"""Tool registry for managing and dispatching tools."""

import logging
from typing import Any

from ..errors import ValidationError
from ..llm.types import ToolSpec
from .base import Tool, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry for available tools.

    ``execute`` never raises for tool failures: unknown tools, invalid
    arguments and exceptions inside a tool all come back as failed
    results.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_specs(self) -> list[ToolSpec]:
        """Get definitions for all tools (for LLM function calling)."""
        return [tool.get_spec() for tool in self._tools.values()]

    async def execute(
        self, name: str, parameters: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        """Execute a tool call by name with arguments."""
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        valid, error = tool.validate_args(parameters)
        if not valid:
            logger.warning(f"Invalid arguments for {name}: {error}")
            return ToolResult(success=False, error=error)

        try:
            return await tool.execute(context, **parameters)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {name}: {e}")
            return ToolResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Tool {name} raised")
            return ToolResult(success=False, error=f"Tool execution failed: {e}")
