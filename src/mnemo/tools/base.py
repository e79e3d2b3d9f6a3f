"""Base tool interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..llm.types import ToolSpec


@dataclass
class ToolResult:
    """Result from tool execution."""

    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolContext:
    """Who is calling a tool."""

    user_id: str
    session_id: str


JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


class Tool(ABC):
    """Base interface for all tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description for LLM."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        ...

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments."""
        ...

    def get_spec(self) -> ToolSpec:
        """Get the tool definition handed to the completion provider."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_args(self, args: dict[str, Any]) -> tuple[bool, str | None]:
        """Validate arguments against schema. Returns (valid, error_message)."""
        required = self.parameters.get("required", [])
        properties = self.parameters.get("properties", {})

        for field in required:
            if field not in args or args[field] is None:
                return False, f"Missing required argument: {field}"

        for key, value in args.items():
            if key not in properties or value is None:
                continue
            expected_type = properties[key].get("type")
            allowed = JSON_TYPES.get(expected_type)
            if allowed is None:
                continue
            # bool is an int subclass; only accept it where booleans are expected
            if isinstance(value, bool) and expected_type != "boolean":
                return False, f"Argument '{key}' must be of type {expected_type}"
            if not isinstance(value, allowed):
                return False, f"Argument '{key}' must be of type {expected_type}"

        return True, None
