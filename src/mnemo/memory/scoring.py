"""Matching strategies for memory search."""

from typing import Protocol


class MemoryScorer(Protocol):
    """Decides whether a stored fact answers a query."""

    def matches(self, query: str, content: str) -> bool:
        ...


class SubstringScorer:
    """Case-sensitive substring match. An empty query matches everything."""

    def matches(self, query: str, content: str) -> bool:
        return query in content
