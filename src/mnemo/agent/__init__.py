"""Session runtimes and their registry."""

from .background import BackgroundFailure, BackgroundTasks
from .context import ContextKey, ContextSlots
from .prompt import build_system_prompt
from .registry import RuntimeRegistry
from .runtime import RuntimeState, SessionRuntime, ToolOutcome, TurnResult

__all__ = [
    "BackgroundFailure",
    "BackgroundTasks",
    "ContextKey",
    "ContextSlots",
    "RuntimeRegistry",
    "RuntimeState",
    "SessionRuntime",
    "ToolOutcome",
    "TurnResult",
    "build_system_prompt",
]
