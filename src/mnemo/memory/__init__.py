"""Durable sessions, history and long-term memory."""

from .extractor import MemoryExtractor
from .manager import MemoryManager
from .models import (
    MemoryFact,
    MemoryScope,
    Message,
    Role,
    Session,
    SweepResult,
    ToolInvocationRecord,
)
from .scoring import MemoryScorer, SubstringScorer
from .store import MemoryStore
from .tools import ForgetTool, RecallTool, RememberTool

__all__ = [
    "ForgetTool",
    "MemoryExtractor",
    "MemoryFact",
    "MemoryManager",
    "MemoryScope",
    "MemoryScorer",
    "MemoryStore",
    "Message",
    "RecallTool",
    "RememberTool",
    "Role",
    "Session",
    "SubstringScorer",
    "SweepResult",
    "ToolInvocationRecord",
]
