"""Fact extraction from conversation turns using the LLM."""

import asyncio
import logging
import re

from ..llm.types import ChatMessage, CompletionProvider

logger = logging.getLogger(__name__)

NONE_SENTINEL = "NONE"

EXTRACTION_PROMPT = """Read this exchange and decide whether it reveals a stable fact about the user that is worth remembering in future conversations.

Rules:
- Only STABLE facts (name, job, location, preferences, projects, family...), not passing moods like "is tired"
- Write ONE short sentence in THIRD PERSON ("The user works as an engineer", not "I am an engineer")
- Never record questions or guesses as facts
- If there is nothing new worth remembering, reply with exactly: NONE

User: {user}
Assistant: {assistant}"""

# Messages that never carry facts worth remembering.
TRIVIAL_PATTERNS = [
    re.compile(
        r"^(hi|hello|hey|yo|hiya|howdy|good (morning|afternoon|evening|night))"
        r"( there)?[\s!.,?]*$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(thanks|thank you|thx|ty|ok|okay|k|cool|nice|great|got it|sure|yes|no|yep|nope"
        r"|bye|goodbye|see you|cheers)[\s!.,?]*$",
        re.IGNORECASE,
    ),
    re.compile(r"^[\s\W]*$"),
]


class MemoryExtractor:
    """Turns a user/assistant exchange into at most one memorable fact."""

    def __init__(
        self,
        provider: CompletionProvider,
        min_length: int = 4,
        max_length: int = 500,
        timeout: float | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            provider: Completion provider used for the extraction call.
            min_length: Shortest accepted fact, in characters.
            max_length: Longest accepted fact, in characters.
            timeout: Seconds allowed for the extraction call; None waits forever.
        """
        self.provider = provider
        self.min_length = min_length
        self.max_length = max_length
        self.timeout = timeout

    def should_extract(self, user_text: str, reply: str, tool_only: bool = False) -> bool:
        """Cheap filter run before spending a completion on extraction."""
        if tool_only:
            return False
        text = user_text.strip()
        if not text:
            return False
        return not any(pattern.match(text) for pattern in TRIVIAL_PATTERNS)

    async def extract(self, user_text: str, reply: str) -> str | None:
        """Ask the model for a fact about the user.

        Returns:
            The fact sentence, or None when the model found nothing or the
            answer falls outside the accepted length window.

        Raises:
            asyncio.TimeoutError: If the call exceeds ``timeout``.
        """
        prompt = EXTRACTION_PROMPT.format(user=user_text, assistant=reply)
        completion = await asyncio.wait_for(
            self.provider.chat([ChatMessage(role="user", content=prompt)]),
            timeout=self.timeout,
        )
        return self._parse_response(completion.content)

    def _parse_response(self, content: str) -> str | None:
        fact = content.strip().strip('"').strip()
        if not fact or fact.rstrip(".") == NONE_SENTINEL:
            return None
        if not self.min_length <= len(fact) <= self.max_length:
            logger.debug(f"Discarding extracted fact of length {len(fact)}")
            return None
        return fact
