"""Memory tools for explicit fact management."""

from typing import Any

from ..errors import ValidationError
from ..tools.base import Tool, ToolContext, ToolResult
from .models import MemoryScope
from .store import MemoryStore


class RememberTool(Tool):
    """Tool for saving explicit facts about the user."""

    def __init__(self, store: MemoryStore, default_importance: float = 2.0) -> None:
        """Initialize with a memory store.

        Args:
            store: The MemoryStore for persistence.
            default_importance: Importance for facts saved without one.
        """
        self.store = store
        self.default_importance = default_importance

    @property
    def name(self) -> str:
        return "remember"

    @property
    def description(self) -> str:
        return (
            "Save a fact about the user for future conversations. "
            "Use when the user explicitly asks to remember something."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": (
                        "The fact to remember, in third person "
                        "(e.g., 'works at Google', 'prefers TypeScript')"
                    ),
                },
                "importance": {
                    "type": "number",
                    "description": "How important the fact is, 0.0 to 3.0",
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional labels for the fact",
                },
            },
            "required": ["content"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Save a user-scoped fact."""
        content = str(kwargs.get("content", "")).strip()
        if not content:
            raise ValidationError("'content' must not be blank")

        importance = kwargs.get("importance")
        if importance is None:
            importance = self.default_importance
        tags = {"explicit", *(str(tag) for tag in kwargs.get("tags") or [])}

        fact_id = self.store.add_memory(
            content,
            MemoryScope.for_user(context.user_id),
            importance=importance,
            tags=tags,
        )
        return ToolResult(success=True, data={"id": fact_id, "content": content})


class RecallTool(Tool):
    """Tool for searching what is known about the user."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "recall"

    @property
    def description(self) -> str:
        return (
            "Search stored facts about the user. "
            "An empty query lists the most important facts."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Text the fact must contain (case-sensitive)",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of facts to return",
                },
            },
            "required": [],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        query = kwargs.get("query") or ""
        limit = kwargs.get("limit") or 10

        facts = self.store.search_memories(
            query, MemoryScope.for_session(context.session_id), limit=limit
        )
        return ToolResult(
            success=True,
            data=[
                {"id": f.id, "content": f.content, "importance": f.importance}
                for f in facts
            ],
        )


class ForgetTool(Tool):
    """Tool for removing a fact about the user."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "forget"

    @property
    def description(self) -> str:
        return (
            "Remove a stored fact by id (ids come from 'recall'). "
            "Use when the user asks to forget something."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "memory_id": {
                    "type": "string",
                    "description": "Id of the fact to forget",
                },
            },
            "required": ["memory_id"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Delete a fact, if it is visible to the caller."""
        memory_id = kwargs.get("memory_id", "")
        fact = self.store.get_memory(memory_id) if memory_id else None

        visible = fact is not None and (
            fact.scope.user_id == context.user_id
            or fact.scope.session_id == context.session_id
        )
        if not visible:
            return ToolResult(success=False, error=f"No memory with id '{memory_id}'")

        self.store.delete_memory(memory_id)
        return ToolResult(success=True, data={"forgotten": memory_id})
