"""Per-conversation turn processing."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, TypeVar

from ..config import AgentConfig
from ..conversation_logger import ConversationLogger
from ..errors import AlreadyExistsError, SessionBusyError, SessionClosedError
from ..llm.types import ChatMessage, Completion, CompletionProvider, ToolCall, Usage
from ..memory import (
    MemoryExtractor,
    MemoryFact,
    MemoryManager,
    MemoryScope,
    MemoryStore,
    Role,
    Session,
    ToolInvocationRecord,
)
from ..retry import RetryExecutor, RetryPolicy
from ..tools import ToolContext, ToolRegistry, ToolResult
from .background import BackgroundTasks
from .context import ContextKey, ContextSlots
from .prompt import build_system_prompt, compose_reply, format_tool_outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RuntimeState(Enum):
    """Lifecycle of a session runtime."""

    FRESH = "fresh"
    READY = "ready"
    PROCESSING = "processing"
    TOOL_DISPATCH = "tool_dispatch"
    RESPONDING = "responding"
    CLOSED = "closed"


@dataclass(frozen=True)
class ToolOutcome:
    """What happened to one requested tool call."""

    call_id: str
    name: str
    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: float = 0.0


@dataclass(frozen=True)
class TurnResult:
    """Result of one processed turn."""

    content: str
    session_id: str
    timestamp: float
    duration_ms: float
    tool_outcomes: list[ToolOutcome] = field(default_factory=list)
    usage: Usage | None = None


class SessionRuntime:
    """One conversation: persist → complete → dispatch tools → respond.

    Memory extraction runs after the turn returns, on the background pool.
    Turns must not overlap; the RuntimeRegistry serializes them per
    session and the runtime refuses a turn while one is in flight.
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        store: MemoryStore,
        provider: CompletionProvider,
        tools: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        retry: RetryExecutor | None = None,
        retry_policy: RetryPolicy | None = None,
        background: BackgroundTasks | None = None,
        memory: MemoryManager | None = None,
        system_prompt: str | None = None,
        conversation_logger: ConversationLogger | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self.store = store
        self.provider = provider
        self.tools = tools or ToolRegistry()
        self.config = config or AgentConfig()
        self.retry = retry or RetryExecutor()
        self.retry_policy = retry_policy
        self.background = background or BackgroundTasks(max_workers=1)
        self.conv_logger = conversation_logger
        self.memory = memory or MemoryManager(
            store,
            MemoryExtractor(
                provider,
                min_length=self.config.min_fact_length,
                max_length=self.config.max_fact_length,
                timeout=self.config.completion_timeout,
            ),
            extracted_importance=self.config.extracted_importance,
        )
        self.state = RuntimeState.FRESH
        self._base_prompt = system_prompt
        self.system_prompt = build_system_prompt(
            self.tools.get_specs(), base_prompt=system_prompt
        )
        self._context = ContextSlots()

        self._initialize(metadata)

    def _initialize(self, metadata: dict[str, Any] | None) -> None:
        """Create the session on first sight and load what is known about the user.

        An existing session already carries its context in history, so
        memory is not reloaded for it.
        """
        existing = self.store.get_session(self.session_id)
        if existing is None:
            self.store.create_session(self.session_id, self.user_id, metadata)
            known = self._load_known_context()
            logger.info(
                f"Created session {self.session_id} for {self.user_id} "
                f"({known} known facts)"
            )
            if self.conv_logger:
                self.conv_logger.log_session_start(self.session_id, self.user_id, known)
        elif existing.user_id != self.user_id:
            raise AlreadyExistsError(
                f"Session {self.session_id} belongs to another user"
            )

        self.state = RuntimeState.READY

    def _load_known_context(self) -> int:
        """Fold the user's top facts into the system prompt. Returns the count."""
        facts = self.memory.load_known_context(
            self.user_id, limit=self.config.known_context_limit
        )
        self.system_prompt = build_system_prompt(
            self.tools.get_specs(),
            memory_block=self.memory.format_for_prompt(facts),
            base_prompt=self._base_prompt,
        )
        return len(facts)

    def _check_ready(self) -> None:
        if self.state is RuntimeState.CLOSED:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        if self.state is not RuntimeState.READY:
            raise SessionBusyError(
                f"Session {self.session_id} is busy ({self.state.value})"
            )

    def _advance(self, state: RuntimeState) -> None:
        # close() during a turn is final
        if self.state is not RuntimeState.CLOSED:
            self.state = state

    async def process_turn(self, text: str) -> TurnResult:
        """Process one user message and return the assistant's reply.

        Raises:
            SessionBusyError: If another turn is in flight.
            SessionClosedError: If the runtime was closed.
            StorageError: If persisting the turn fails.
            Exception: The provider's last error once retries are exhausted
                or the error is fatal. Nothing is persisted for the reply.
        """
        self._check_ready()
        start = time.monotonic()
        self.state = RuntimeState.PROCESSING

        try:
            user_message = self.store.append_message(self.session_id, Role.USER, text)
            if self.conv_logger:
                self.conv_logger.log_user_message(self.session_id, text)

            completion = await self._complete(self._build_context())

            outcomes: list[ToolOutcome] = []
            if completion.tool_calls:
                self._advance(RuntimeState.TOOL_DISPATCH)
                outcomes = await self._dispatch_tools(
                    completion.tool_calls, user_message.id
                )

            self._advance(RuntimeState.RESPONDING)
            content = compose_reply(
                completion.content,
                [format_tool_outcome(o.name, o.success, o.data, o.error) for o in outcomes],
            )

            if content:
                reply = self.store.append_message(
                    self.session_id, Role.ASSISTANT, content
                )
                timestamp = reply.timestamp
                if self.conv_logger:
                    self.conv_logger.log_assistant_message(self.session_id, content)
            else:
                logger.warning(f"Empty reply in session {self.session_id}, not persisted")
                timestamp = time.time()
        except Exception as e:
            logger.error(f"Turn failed in session {self.session_id}: {e}")
            if self.conv_logger:
                self.conv_logger.log_error(self.session_id, str(e), context="process_turn")
            raise
        finally:
            self._advance(RuntimeState.READY)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(f"Turn processed in {duration_ms:.0f}ms for session {self.session_id}")

        if content:
            tool_only = bool(outcomes) and not completion.content.strip()
            self._schedule_extraction(text, content, tool_only)

        return TurnResult(
            content=content,
            session_id=self.session_id,
            timestamp=timestamp,
            duration_ms=duration_ms,
            tool_outcomes=outcomes,
            usage=completion.usage,
        )

    def _build_context(self) -> list[ChatMessage]:
        """System prompt followed by the full persisted history."""
        history = self.store.list_messages(self.session_id)
        return [ChatMessage(role=Role.SYSTEM.value, content=self.system_prompt)] + [
            ChatMessage(role=m.role.value, content=m.content) for m in history
        ]

    async def _complete(self, context: list[ChatMessage]) -> Completion:
        """Call the provider through the retry layer, each attempt time-bounded."""
        specs = self.tools.get_specs() or None

        async def attempt() -> Completion:
            return await asyncio.wait_for(
                self.provider.chat(context, specs),
                timeout=self.config.completion_timeout,
            )

        if self.conv_logger:
            self.conv_logger.log_llm_request(
                self.session_id, len(context), len(specs or [])
            )

        completion = await self.retry.run(attempt, self.retry_policy)

        if self.conv_logger:
            usage = completion.usage
            self.conv_logger.log_llm_response(
                self.session_id,
                has_content=bool(completion.content),
                tool_calls_count=len(completion.tool_calls),
                usage=asdict(usage) if usage else None,
            )
        return completion

    async def _dispatch_tools(
        self, tool_calls: list[ToolCall], message_id: str
    ) -> list[ToolOutcome]:
        """Run each tool call independently; one failure never stops the rest."""
        tool_context = ToolContext(user_id=self.user_id, session_id=self.session_id)
        outcomes = []

        for call in tool_calls:
            logger.info(f"Executing tool {call.name} in session {self.session_id}")
            if self.conv_logger:
                self.conv_logger.log_tool_call(
                    self.session_id, call.name, call.parameters, call.id
                )

            started = time.monotonic()
            if call.parse_error:
                result = ToolResult(success=False, error=call.parse_error)
            else:
                try:
                    result = await asyncio.wait_for(
                        self.tools.execute(call.name, call.parameters, tool_context),
                        timeout=self.config.tool_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(f"Tool {call.name} timed out in session {self.session_id}")
                    result = ToolResult(
                        success=False,
                        error=f"Tool timed out after {self.config.tool_timeout:g}s",
                    )
                except Exception as e:
                    logger.exception(f"Tool {call.name} raised")
                    result = ToolResult(success=False, error=str(e) or type(e).__name__)
            duration_ms = (time.monotonic() - started) * 1000

            error = result.error
            if not result.success and not error:
                error = "Tool failed without an error message"

            self.store.add_tool_call(
                ToolInvocationRecord(
                    id=uuid.uuid4().hex,
                    session_id=self.session_id,
                    message_id=message_id,
                    tool_name=call.name,
                    parameters=call.parameters,
                    result=result.data if result.success else None,
                    success=result.success,
                    error=error,
                    duration_ms=duration_ms,
                    timestamp=time.time(),
                )
            )
            if self.conv_logger:
                self.conv_logger.log_tool_result(
                    self.session_id,
                    call.name,
                    result.success,
                    data=result.data,
                    error=error,
                    duration_ms=duration_ms,
                )

            outcomes.append(
                ToolOutcome(
                    call_id=call.id,
                    name=call.name,
                    success=result.success,
                    data=result.data,
                    error=error,
                    duration_ms=duration_ms,
                )
            )
            logger.info(f"Tool {call.name} completed: {result.success}")

        return outcomes

    def _schedule_extraction(self, user_text: str, reply: str, tool_only: bool) -> None:
        """Hand memory extraction to the background pool. Never awaited here."""
        if not self.config.extraction_enabled or self.memory.extractor is None:
            return

        async def extract() -> None:
            fact_id = await self.memory.extract_from_turn(
                self.user_id, user_text, reply, tool_only=tool_only
            )
            if self.conv_logger:
                self.conv_logger.log_extraction(self.session_id, fact_id)

        self.background.spawn(extract, name=f"extract-memory:{self.session_id}")

    def clear_history(self) -> None:
        """Delete the session's messages and reload known facts into the prompt."""
        if self.state is RuntimeState.CLOSED:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        self.store.clear_messages(self.session_id)
        self._load_known_context()
        logger.info(f"Cleared history for session {self.session_id}")

    def add_memory(
        self, content: str, importance: float = 1.0, tags: set[str] | None = None
    ) -> str:
        """Store a fact visible only within this session."""
        return self.store.add_memory(
            content, MemoryScope.for_session(self.session_id), importance, tags
        )

    def search_memories(self, query: str, limit: int = 10) -> list[MemoryFact]:
        """Search facts visible to this session."""
        return self.store.search_memories(
            query, MemoryScope.for_session(self.session_id), limit
        )

    def session_info(self) -> Session | None:
        return self.store.get_session(self.session_id)

    def set_system_prompt(self, prompt: str) -> None:
        self.system_prompt = prompt
        logger.debug(f"System prompt updated for session {self.session_id}")

    def set_context(self, key: ContextKey[T], value: T) -> None:
        self._context.set(key, value)

    def get_context(self, key: ContextKey[T], default: T | None = None) -> T | None:
        return self._context.get(key, default)

    def close(self) -> None:
        """Stop accepting turns. Stored data is kept."""
        if self.state is RuntimeState.CLOSED:
            return
        self.state = RuntimeState.CLOSED
        if self.conv_logger:
            self.conv_logger.log_session_end(self.session_id)
