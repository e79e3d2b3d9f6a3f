"""Data models for sessions, messages and long-term memory."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Session:
    """A conversation owned by one user."""

    id: str
    user_id: str
    created_at: float
    updated_at: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A single persisted message. Immutable once written."""

    id: str
    session_id: str
    role: Role
    content: str
    timestamp: float
    tool_call_id: str | None = None
    tool_name: str | None = None


@dataclass(frozen=True)
class MemoryScope:
    """Visibility of a memory fact: one session, or every session of a user.

    Exactly one of ``session_id`` and ``user_id`` is set.
    """

    session_id: str | None = None
    user_id: str | None = None

    def __post_init__(self) -> None:
        if (self.session_id is None) == (self.user_id is None):
            raise ValueError("MemoryScope needs exactly one of session_id or user_id")

    @classmethod
    def for_session(cls, session_id: str) -> "MemoryScope":
        return cls(session_id=session_id)

    @classmethod
    def for_user(cls, user_id: str) -> "MemoryScope":
        return cls(user_id=user_id)

    @property
    def is_user(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class MemoryFact:
    """A long-term fact.

    Attributes:
        id: Unique fact id.
        scope: Session-local or cross-session visibility.
        content: The fact text.
        importance: Ranking weight, conventionally 0.0-3.0, unbounded.
        access_count: Times the fact was served to a caller.
        tags: Free-form labels (e.g. 'auto' for extracted facts).
        created_at: Epoch seconds when stored.
        accessed_at: Epoch seconds when last served.
    """

    id: str
    scope: MemoryScope
    content: str
    importance: float
    access_count: int
    tags: frozenset[str]
    created_at: float
    accessed_at: float


@dataclass(frozen=True)
class ToolInvocationRecord:
    """Audit record of one tool call. Write-once."""

    id: str
    session_id: str
    tool_name: str
    parameters: dict[str, Any]
    success: bool
    timestamp: float
    message_id: str | None = None
    result: Any = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass(frozen=True)
class SweepResult:
    """Counts of facts deleted by a retention sweep."""

    aged_out: int = 0
    evicted: int = 0

    @property
    def total(self) -> int:
        return self.aged_out + self.evicted
