"""Conversational agent shell with durable history and long-term memory."""

from .agent import RuntimeRegistry, SessionRuntime, TurnResult
from .config import AgentConfig, MemoryExpiryConfig, Settings
from .memory import MemoryScope, MemoryStore
from .retry import RetryExecutor, RetryPolicy

__all__ = [
    "AgentConfig",
    "MemoryExpiryConfig",
    "MemoryScope",
    "MemoryStore",
    "RetryExecutor",
    "RetryPolicy",
    "RuntimeRegistry",
    "SessionRuntime",
    "Settings",
    "TurnResult",
]

__version__ = "0.1.0"
