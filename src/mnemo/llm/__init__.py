"""Completion provider interface and implementations."""

from .groq_provider import GroqCompletionProvider
from .types import ChatMessage, Completion, CompletionProvider, ToolCall, ToolSpec, Usage

__all__ = [
    "ChatMessage",
    "Completion",
    "CompletionProvider",
    "GroqCompletionProvider",
    "ToolCall",
    "ToolSpec",
    "Usage",
]
