"""Tests for the memory retention sweep."""

from pathlib import Path

import pytest

from mnemo.config import MemoryExpiryConfig
from mnemo.memory import MemoryScope, MemoryStore

DAY = 86400


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> MemoryStore:
    """Store whose own policy never runs; tests pass the policy explicitly."""
    store = MemoryStore(
        tmp_path / "retention.db",
        expiry=MemoryExpiryConfig(enabled=False),
        clock=clock,
    )
    yield store
    store.close()


def policy(**overrides) -> MemoryExpiryConfig:
    values = dict(
        enabled=True,
        max_memories_per_user=100,
        max_age_days=90,
        min_importance=0.3,
        cleanup_on_startup=False,
    )
    values.update(overrides)
    return MemoryExpiryConfig(**values)


def user_contents(store: MemoryStore, user_id: str) -> set[str]:
    rows = store._get_connection().execute(
        "SELECT content FROM memories WHERE user_id = ?", (user_id,)
    ).fetchall()
    return {row["content"] for row in rows}


class TestCapacity:
    """Tests for trimming users over their fact budget."""

    def test_evicts_least_important(self, store: MemoryStore, clock: FakeClock):
        """Seven facts under a cap of five keep the five most important."""
        for importance in range(1, 8):
            clock.advance(1)
            store.add_memory(f"fact {importance}", MemoryScope.for_user("alice"), importance)

        result = store.sweep_retention(policy(max_memories_per_user=5))

        assert result.evicted == 2
        assert result.aged_out == 0
        assert user_contents(store, "alice") == {f"fact {i}" for i in range(3, 8)}

    def test_least_recently_accessed_evicted_on_tie(
        self, store: MemoryStore, clock: FakeClock
    ):
        """Equal importance evicts the fact accessed longest ago."""
        stale = store.add_memory("stale", MemoryScope.for_user("alice"))
        clock.advance(1)
        fresh = store.add_memory("fresh", MemoryScope.for_user("alice"))
        clock.advance(1)
        store.get_memory(stale)  # stale is now the most recently accessed

        store.sweep_retention(policy(max_memories_per_user=1))

        assert store.get_memory(stale) is not None
        assert store.get_memory(fresh) is None

    def test_id_breaks_full_ties(self, store: MemoryStore):
        """Identical importance and access time evict by ascending id."""
        ids = [store.add_memory(f"fact {i}", MemoryScope.for_user("alice")) for i in range(4)]

        store.sweep_retention(policy(max_memories_per_user=2))

        remaining = store._get_connection().execute(
            "SELECT id FROM memories WHERE user_id = ?", ("alice",)
        ).fetchall()
        assert {row["id"] for row in remaining} == set(sorted(ids)[2:])

    def test_negative_importance_goes_first(self, store: MemoryStore):
        store.add_memory("negative", MemoryScope.for_user("alice"), -1.0)
        store.add_memory("zero", MemoryScope.for_user("alice"), 0.0)

        store.sweep_retention(policy(max_memories_per_user=1))

        assert user_contents(store, "alice") == {"zero"}

    def test_under_cap_untouched(self, store: MemoryStore):
        for i in range(3):
            store.add_memory(f"fact {i}", MemoryScope.for_user("alice"))

        result = store.sweep_retention(policy(max_memories_per_user=5))

        assert result.total == 0
        assert store.count_memories("alice") == 3

    def test_each_user_trimmed_separately(self, store: MemoryStore):
        """Every user is held to the cap independently."""
        for user in ("alice", "bob"):
            for importance in range(1, 5):
                store.add_memory(f"{user} {importance}", MemoryScope.for_user(user), importance)

        result = store.sweep_retention(policy(max_memories_per_user=2))

        assert result.evicted == 4
        assert user_contents(store, "alice") == {"alice 3", "alice 4"}
        assert user_contents(store, "bob") == {"bob 3", "bob 4"}

    def test_restrict_to_one_user(self, store: MemoryStore):
        for user in ("alice", "bob"):
            for importance in range(1, 4):
                store.add_memory(f"{user} {importance}", MemoryScope.for_user(user), importance)

        store.sweep_retention(policy(max_memories_per_user=1), user_id="alice")

        assert store.count_memories("alice") == 1
        assert store.count_memories("bob") == 3


class TestAge:
    """Tests for age-based expiry."""

    def test_important_old_facts_survive(self, store: MemoryStore, clock: FakeClock):
        """Old facts are deleted only when their importance is low."""
        store.add_memory("keeper", MemoryScope.for_user("alice"), importance=2.0)
        store.add_memory("trivia", MemoryScope.for_user("alice"), importance=0.1)
        clock.advance(200 * DAY)

        result = store.sweep_retention(policy())

        assert result.aged_out == 1
        assert user_contents(store, "alice") == {"keeper"}

    def test_recent_unimportant_facts_survive(self, store: MemoryStore, clock: FakeClock):
        store.add_memory("trivia", MemoryScope.for_user("alice"), importance=0.1)
        clock.advance(10 * DAY)

        assert store.sweep_retention(policy()).total == 0
        assert user_contents(store, "alice") == {"trivia"}

    def test_age_pass_runs_before_capacity(self, store: MemoryStore, clock: FakeClock):
        """Facts removed for age count toward bringing a user under the cap."""
        store.add_memory("old trivia", MemoryScope.for_user("alice"), importance=0.1)
        clock.advance(200 * DAY)
        store.add_memory("new a", MemoryScope.for_user("alice"), importance=1.0)
        store.add_memory("new b", MemoryScope.for_user("alice"), importance=1.0)

        result = store.sweep_retention(policy(max_memories_per_user=2))

        assert result.aged_out == 1
        assert result.evicted == 0
        assert user_contents(store, "alice") == {"new a", "new b"}


class TestSweepBehavior:
    """Tests for what the sweep leaves alone."""

    def test_disabled_policy_is_noop(self, store: MemoryStore, clock: FakeClock):
        store.add_memory("trivia", MemoryScope.for_user("alice"), importance=0.0)
        clock.advance(1000 * DAY)

        result = store.sweep_retention(policy(enabled=False, max_memories_per_user=0))

        assert result.total == 0
        assert store.count_memories("alice") == 1

    def test_empty_store(self, store: MemoryStore):
        assert store.sweep_retention(policy()).total == 0

    def test_session_facts_untouched(self, store: MemoryStore, clock: FakeClock):
        """Only user-scoped facts are subject to retention."""
        store.add_memory("session trivia", MemoryScope.for_session("s1"), importance=0.0)
        clock.advance(500 * DAY)

        store.sweep_retention(policy(max_memories_per_user=0))

        row = store._get_connection().execute(
            "SELECT COUNT(*) AS n FROM memories WHERE session_id = 's1'"
        ).fetchone()
        assert row["n"] == 1

    def test_sweep_does_not_touch_access_stats(self, store: MemoryStore, clock: FakeClock):
        fact_id = store.add_memory("x", MemoryScope.for_user("alice"))
        clock.advance(5)

        store.sweep_retention(policy())

        row = store._get_connection().execute(
            "SELECT access_count, accessed_at FROM memories WHERE id = ?", (fact_id,)
        ).fetchone()
        assert row["access_count"] == 0
        assert row["accessed_at"] == clock.now - 5

    def test_store_policy_used_by_default(self, tmp_path: Path):
        store = MemoryStore(
            tmp_path / "own.db",
            expiry=policy(max_memories_per_user=1),
        )
        store.add_memory("a", MemoryScope.for_user("alice"), 1.0)
        store.add_memory("b", MemoryScope.for_user("alice"), 2.0)

        assert store.sweep_retention().evicted == 1
        assert user_contents(store, "alice") == {"b"}
        store.close()

    def test_sweep_on_startup(self, tmp_path: Path):
        """Opening a store with cleanup_on_startup trims existing data."""
        db_path = tmp_path / "startup.db"
        store = MemoryStore(db_path, expiry=MemoryExpiryConfig(enabled=False))
        for importance in range(1, 6):
            store.add_memory(f"fact {importance}", MemoryScope.for_user("alice"), importance)
        store.close()

        reopened = MemoryStore(
            db_path, expiry=policy(max_memories_per_user=2, cleanup_on_startup=True)
        )
        assert user_contents(reopened, "alice") == {"fact 4", "fact 5"}
        reopened.close()

    def test_no_startup_sweep_when_disabled(self, tmp_path: Path):
        db_path = tmp_path / "startup.db"
        store = MemoryStore(db_path, expiry=MemoryExpiryConfig(enabled=False))
        for i in range(3):
            store.add_memory(f"fact {i}", MemoryScope.for_user("alice"))
        store.close()

        reopened = MemoryStore(
            db_path, expiry=policy(max_memories_per_user=1, cleanup_on_startup=False)
        )
        assert reopened.count_memories("alice") == 3
        reopened.close()
