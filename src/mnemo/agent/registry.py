"""Registry of live session runtimes."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from groq import AsyncGroq

from ..config import AgentConfig, Settings
from ..conversation_logger import ConversationLogger
from ..errors import AlreadyExistsError
from ..llm import GroqCompletionProvider
from ..llm.types import CompletionProvider
from ..memory import (
    ForgetTool,
    MemoryStore,
    RecallTool,
    RememberTool,
    SweepResult,
)
from ..retry import RetryExecutor, RetryPolicy
from ..tools import ToolRegistry
from .background import BackgroundTasks
from .runtime import SessionRuntime, TurnResult

logger = logging.getLogger(__name__)


class RuntimeRegistry:
    """Creates runtimes lazily, serializes turns per session, owns the store.

    Pass an instance to whoever needs it; there is no global default.
    """

    def __init__(
        self,
        store: MemoryStore,
        provider: CompletionProvider,
        tools: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        background: BackgroundTasks | None = None,
        retry_policy: RetryPolicy | None = None,
        conversation_logger: ConversationLogger | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.tools = tools or ToolRegistry()
        self.config = config or AgentConfig()
        self.background = background or BackgroundTasks()
        self.retry = RetryExecutor(default_policy=retry_policy)
        self.conv_logger = conversation_logger
        self._runtimes: dict[str, SessionRuntime] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_used: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RuntimeRegistry":
        """Wire a registry with SQLite storage, Groq completions and memory tools."""
        store = MemoryStore(settings.db_path, expiry=settings.expiry)
        provider = GroqCompletionProvider(
            AsyncGroq(api_key=settings.groq_api_key),
            model=settings.agent.model,
        )

        tools = ToolRegistry()
        tools.register(RememberTool(store))
        tools.register(RecallTool(store))
        tools.register(ForgetTool(store))

        conv_logger = ConversationLogger(settings.log_dir) if settings.log_dir else None

        return cls(
            store,
            provider,
            tools=tools,
            config=settings.agent,
            background=BackgroundTasks(max_workers=settings.background_workers),
            retry_policy=settings.retry,
            conversation_logger=conv_logger,
        )

    def get_lock(self, session_id: str) -> asyncio.Lock:
        """Get the lock for a session id."""
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def run(
        self,
        user_id: str,
        text: str,
        session_id: str | None = None,
        system_prompt: str | None = None,
    ) -> TurnResult:
        """Run one turn, creating the session runtime if needed.

        Turns on the same session id wait for each other. Every call
        without a session id starts a new runtime that stays registered
        until ``remove_runtime``, ``evict_idle`` or ``shutdown``.

        Args:
            user_id: The user sending the message.
            text: The message.
            session_id: Existing session id; a new one is generated if absent.
            system_prompt: Replaces the default prompt for a new runtime.

        Returns:
            The TurnResult of the runtime.
        """
        session_id = session_id or uuid.uuid4().hex
        logger.info(f"Running turn for session {session_id}, user {user_id}")

        async with self.get_lock(session_id):
            runtime = self._runtimes.get(session_id)
            if runtime is None:
                runtime = self._create_runtime(session_id, user_id, system_prompt)
                self._runtimes[session_id] = runtime
            elif runtime.user_id != user_id:
                raise AlreadyExistsError(f"Session {session_id} belongs to another user")

            try:
                return await runtime.process_turn(text)
            finally:
                if session_id in self._runtimes:
                    self._last_used[session_id] = time.monotonic()

    def _create_runtime(
        self, session_id: str, user_id: str, system_prompt: str | None
    ) -> SessionRuntime:
        return SessionRuntime(
            session_id,
            user_id,
            self.store,
            self.provider,
            tools=self.tools,
            config=self.config,
            retry=self.retry,
            background=self.background,
            system_prompt=system_prompt,
            conversation_logger=self.conv_logger,
        )

    def get_runtime(self, session_id: str) -> SessionRuntime | None:
        return self._runtimes.get(session_id)

    def remove_runtime(self, session_id: str) -> bool:
        """Close and forget a runtime. Stored history is kept.

        A lock held by an in-flight turn stays registered so the next turn
        on the session still waits for it.
        """
        runtime = self._runtimes.pop(session_id, None)
        self._last_used.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]
        if runtime is None:
            return False
        runtime.close()
        return True

    def evict_idle(self, max_idle_seconds: float) -> int:
        """Remove runtimes with no turn for ``max_idle_seconds``.

        Runtimes with a turn in flight are skipped. Returns the number
        removed.
        """
        now = time.monotonic()
        idle = [
            session_id
            for session_id, last_used in self._last_used.items()
            if now - last_used >= max_idle_seconds
            and not (session_id in self._locks and self._locks[session_id].locked())
        ]
        for session_id in idle:
            self.remove_runtime(session_id)

        # locks left behind by turns that outlived their runtime
        for session_id in [
            s for s, lock in self._locks.items()
            if s not in self._runtimes and not lock.locked()
        ]:
            del self._locks[session_id]

        if idle:
            logger.info(f"Evicted {len(idle)} idle runtimes")
        return len(idle)

    def sweep(self, user_id: str | None = None) -> SweepResult:
        """Run the store's retention sweep."""
        return self.store.sweep_retention(user_id=user_id)

    def stats(self) -> dict[str, Any]:
        return {
            "active_runtimes": len(self._runtimes),
            "tool_count": len(self.tools.list_tools()),
            "pending_background": self.background.pending,
            "background_failures": len(self.background.failures),
        }

    async def shutdown(self) -> None:
        """Finish background work, close every runtime and the store."""
        await self.background.drain()
        for session_id in list(self._runtimes):
            self.remove_runtime(session_id)
        self.store.close()
        logger.info("Runtime registry shut down")
