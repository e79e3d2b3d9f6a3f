"""Tests for RuntimeRegistry, including memory carried across sessions."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from mnemo.agent import BackgroundTasks, RuntimeRegistry, SessionRuntime
from mnemo.config import AgentConfig, MemoryExpiryConfig, Settings
from mnemo.errors import AlreadyExistsError
from mnemo.llm import Completion, GroqCompletionProvider
from mnemo.memory import MemoryScope, MemoryStore, Role
from mnemo.memory.extractor import EXTRACTION_PROMPT
from mnemo.retry import RetryPolicy

EXTRACTION_MARKER = EXTRACTION_PROMPT.splitlines()[0]


class RememberingModel:
    """Fake model that only knows what the system prompt tells it."""

    def __init__(self) -> None:
        self.calls = 0

    async def chat(self, messages, tools=None):
        self.calls += 1
        last = messages[-1].content
        if last.startswith(EXTRACTION_MARKER):
            if "engineer" in last:
                return Completion(content="The user's name is Li and they work as an engineer.")
            return Completion(content="NONE")
        if "what is my job" in last.lower():
            if "engineer" in messages[0].content:
                return Completion(content="You work as an engineer.")
            return Completion(content="I don't know yet.")
        return Completion(content="Nice to meet you, Li!")


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    return MemoryStore(tmp_path / "registry.db", expiry=MemoryExpiryConfig(enabled=False))


@pytest.fixture
def registry(store: MemoryStore) -> RuntimeRegistry:
    registry = RuntimeRegistry(
        store,
        RememberingModel(),
        background=BackgroundTasks(max_workers=2),
        retry_policy=RetryPolicy(max_attempts=1),
    )
    yield registry
    store.close()


class TestRun:
    """Tests for routing turns to runtimes."""

    @pytest.mark.asyncio
    async def test_creates_runtime_lazily(self, registry: RuntimeRegistry):
        assert registry.get_runtime("s1") is None

        result = await registry.run("alice", "hello", session_id="s1")

        assert result.session_id == "s1"
        assert isinstance(registry.get_runtime("s1"), SessionRuntime)
        assert registry.stats()["active_runtimes"] == 1

    @pytest.mark.asyncio
    async def test_generates_session_id(self, registry: RuntimeRegistry):
        first = await registry.run("alice", "hello")
        second = await registry.run("alice", "hello")

        assert first.session_id != second.session_id
        assert registry.store.session_exists(first.session_id)

    @pytest.mark.asyncio
    async def test_reuses_runtime(self, registry: RuntimeRegistry):
        await registry.run("alice", "one", session_id="s1")
        runtime = registry.get_runtime("s1")
        await registry.run("alice", "two", session_id="s1")

        assert registry.get_runtime("s1") is runtime
        assert len(registry.store.list_messages("s1")) == 4
        await registry.background.drain()

    @pytest.mark.asyncio
    async def test_other_user_rejected(self, registry: RuntimeRegistry):
        await registry.run("alice", "hello", session_id="s1")
        with pytest.raises(AlreadyExistsError):
            await registry.run("bob", "hello", session_id="s1")

    @pytest.mark.asyncio
    async def test_turns_on_one_session_are_serialized(self, store: MemoryStore):
        """Concurrent turns on the same session wait instead of failing."""
        release = asyncio.Event()
        provider = AsyncMock()

        async def slow(messages, tools=None):
            await release.wait()
            return Completion(content=f"re: {messages[-1].content}")

        provider.chat.side_effect = slow
        registry = RuntimeRegistry(
            store, provider, config=AgentConfig(extraction_enabled=False)
        )

        first = asyncio.create_task(registry.run("alice", "one", session_id="s1"))
        second = asyncio.create_task(registry.run("alice", "two", session_id="s1"))
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(first, second)

        messages = store.list_messages("s1")
        assert [(m.role, m.content) for m in messages] == [
            (Role.USER, "one"),
            (Role.ASSISTANT, "re: one"),
            (Role.USER, "two"),
            (Role.ASSISTANT, "re: two"),
        ]
        store.close()

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self, store: MemoryStore):
        started = 0
        both_started = asyncio.Event()
        provider = AsyncMock()

        async def rendezvous(messages, tools=None):
            nonlocal started
            started += 1
            if started == 2:
                both_started.set()
            await both_started.wait()
            return Completion(content="ok")

        provider.chat.side_effect = rendezvous
        registry = RuntimeRegistry(
            store, provider, config=AgentConfig(extraction_enabled=False)
        )

        await asyncio.wait_for(
            asyncio.gather(
                registry.run("alice", "a", session_id="s1"),
                registry.run("bob", "b", session_id="s2"),
            ),
            timeout=1,
        )
        store.close()


class TestCrossSessionMemory:
    """A fact learned in one session is known in the next."""

    @pytest.mark.asyncio
    async def test_new_session_knows_extracted_fact(self, registry: RuntimeRegistry):
        await registry.run("li", "My name is Li, I am an engineer", session_id="first")
        await registry.background.drain()

        facts = registry.store.list_by_user("li")
        assert len(facts) == 1
        assert "engineer" in facts[0].content

        result = await registry.run("li", "What is my job?", session_id="second")

        assert "engineer" in result.content
        assert "<known_context>" in registry.get_runtime("second").system_prompt
        await registry.background.drain()

    @pytest.mark.asyncio
    async def test_other_users_facts_not_shared(self, registry: RuntimeRegistry):
        await registry.run("li", "My name is Li, I am an engineer", session_id="first")
        await registry.background.drain()

        result = await registry.run("ana", "What is my job?", session_id="other")

        assert "engineer" not in result.content
        await registry.background.drain()


class TestLifecycle:
    """Tests for removal, sweep, stats and shutdown."""

    @pytest.mark.asyncio
    async def test_remove_runtime_keeps_history(self, registry: RuntimeRegistry):
        await registry.run("alice", "hello", session_id="s1")
        runtime = registry.get_runtime("s1")

        assert registry.remove_runtime("s1")
        assert not registry.remove_runtime("s1")
        assert registry.get_runtime("s1") is None
        assert runtime.state.value == "closed"
        assert len(registry.store.list_messages("s1")) == 2

    @pytest.mark.asyncio
    async def test_remove_during_turn_keeps_turns_serialized(self, store: MemoryStore):
        """A turn started after removal waits for the one still running."""
        running = 0
        peak = 0
        release = asyncio.Event()
        provider = AsyncMock()

        async def slow(messages, tools=None):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1
            return Completion(content=f"re: {messages[-1].content}")

        provider.chat.side_effect = slow
        registry = RuntimeRegistry(
            store, provider, config=AgentConfig(extraction_enabled=False)
        )

        first = asyncio.create_task(registry.run("alice", "a", session_id="s1"))
        await asyncio.sleep(0.01)
        old = registry.get_runtime("s1")
        assert registry.remove_runtime("s1")

        second = asyncio.create_task(registry.run("alice", "b", session_id="s1"))
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(first, second)

        assert peak == 1
        assert old.state.value == "closed"
        assert registry.get_runtime("s1") is not old
        assert [m.content for m in store.list_messages("s1")] == [
            "a",
            "re: a",
            "b",
            "re: b",
        ]
        store.close()

    @pytest.mark.asyncio
    async def test_evict_idle(self, registry: RuntimeRegistry):
        await registry.run("alice", "hello", session_id="s1")
        await registry.run("alice", "hello", session_id="s2")
        await registry.background.drain()

        assert registry.evict_idle(3600) == 0
        assert registry.stats()["active_runtimes"] == 2

        assert registry.evict_idle(0) == 2
        assert registry.stats()["active_runtimes"] == 0
        assert registry._locks == {}
        assert len(registry.store.list_messages("s1")) == 2

    @pytest.mark.asyncio
    async def test_evict_idle_skips_busy_runtime(self, store: MemoryStore):
        release = asyncio.Event()
        provider = AsyncMock()

        async def slow(messages, tools=None):
            if messages[-1].content == "wait":
                await release.wait()
            return Completion(content="ok")

        provider.chat.side_effect = slow
        registry = RuntimeRegistry(
            store, provider, config=AgentConfig(extraction_enabled=False)
        )
        await registry.run("alice", "hello", session_id="s1")
        busy = asyncio.create_task(registry.run("alice", "wait", session_id="s1"))
        await asyncio.sleep(0.01)

        assert registry.evict_idle(0) == 0
        assert registry.get_runtime("s1") is not None

        release.set()
        await busy
        assert registry.evict_idle(0) == 1
        store.close()

    def test_sweep_uses_store_policy(self, tmp_path: Path):
        store = MemoryStore(
            tmp_path / "sweep.db",
            expiry=MemoryExpiryConfig(max_memories_per_user=1, cleanup_on_startup=False),
        )
        store.add_memory("a", MemoryScope.for_user("alice"), 1.0)
        store.add_memory("b", MemoryScope.for_user("alice"), 2.0)
        registry = RuntimeRegistry(store, RememberingModel())

        result = registry.sweep("alice")

        assert result.evicted == 1
        store.close()

    def test_stats(self, registry: RuntimeRegistry):
        stats = registry.stats()
        assert stats == {
            "active_runtimes": 0,
            "tool_count": 0,
            "pending_background": 0,
            "background_failures": 0,
        }

    @pytest.mark.asyncio
    async def test_shutdown_drains_and_closes(self, tmp_path: Path):
        store = MemoryStore(tmp_path / "shutdown.db")
        registry = RuntimeRegistry(store, RememberingModel())
        await registry.run("li", "My name is Li, I am an engineer", session_id="s1")

        await registry.shutdown()

        assert registry.get_runtime("s1") is None
        assert registry.background.pending == 0
        reopened = MemoryStore(tmp_path / "shutdown.db")
        assert reopened.count_memories("li") == 1
        reopened.close()


class TestFromSettings:
    def test_wires_components(self, tmp_path: Path):
        settings = Settings(
            db_path=tmp_path / "wired.db",
            groq_api_key="gsk_test",
            log_dir=tmp_path / "logs",
            background_workers=3,
        )

        registry = RuntimeRegistry.from_settings(settings)

        assert isinstance(registry.provider, GroqCompletionProvider)
        assert registry.provider.model == settings.agent.model
        assert sorted(registry.tools.list_tools()) == ["forget", "recall", "remember"]
        assert registry.background.max_workers == 3
        assert registry.conv_logger is not None
        assert (tmp_path / "logs").is_dir()
        registry.store.close()
