"""Memory manager for orchestrating fact retrieval and extraction."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .models import MemoryFact, MemoryScope
from .store import MemoryStore

if TYPE_CHECKING:
    from .extractor import MemoryExtractor

logger = logging.getLogger(__name__)


class MemoryManager:
    """Loads known facts for prompts and stores newly extracted ones.

    This is the runtime's interface to long-term memory, coordinating
    between the store and the extractor.
    """

    def __init__(
        self,
        store: MemoryStore,
        extractor: MemoryExtractor | None = None,
        extracted_importance: float = 1.5,
    ) -> None:
        """Initialize the manager with a store and optional extractor.

        Args:
            store: The MemoryStore for persistence.
            extractor: Optional MemoryExtractor for automatic extraction.
            extracted_importance: Importance given to extracted facts.
        """
        self.store = store
        self.extractor = extractor
        self.extracted_importance = extracted_importance

    def load_known_context(self, user_id: str, limit: int = 5) -> list[MemoryFact]:
        """Get the user's most important cross-session facts."""
        return self.store.list_by_user(user_id, limit=limit)

    def format_for_prompt(self, facts: list[MemoryFact]) -> str:
        """Format facts as a block for injection into the system prompt.

        Args:
            facts: List of facts to format.

        Returns:
            XML-formatted block, or empty string if no facts.
        """
        if not facts:
            return ""

        lines = "\n".join(f"- {fact.content}" for fact in facts)
        return f"""<known_context>
What you already know about the user:
{lines}
</known_context>"""

    async def extract_from_turn(
        self, user_id: str, user_text: str, reply: str, tool_only: bool = False
    ) -> str | None:
        """Extract a fact from one exchange and store it for the user.

        Provider and storage errors propagate to the caller.

        Returns:
            The new fact id, or None if nothing was worth remembering.
        """
        if self.extractor is None:
            return None
        if not self.extractor.should_extract(user_text, reply, tool_only=tool_only):
            logger.debug("Skipping extraction for trivial exchange")
            return None

        fact = await self.extractor.extract(user_text, reply)
        if fact is None:
            return None

        fact_id = self.store.add_memory(
            fact,
            MemoryScope.for_user(user_id),
            importance=self.extracted_importance,
            tags={"auto"},
        )
        logger.info(f"Remembered fact {fact_id} for user {user_id}")
        return fact_id
