"""SQLite storage for sessions, messages, memory facts and tool calls."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from ..config import MemoryExpiryConfig
from ..errors import AlreadyExistsError, NotFoundError, StorageError
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

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL,
    metadata    TEXT
);

CREATE TABLE IF NOT EXISTS messages (
    id            TEXT PRIMARY KEY,
    session_id    TEXT NOT NULL,
    role          TEXT NOT NULL CHECK(role IN ('system', 'user', 'assistant', 'tool')),
    content       TEXT NOT NULL,
    tool_call_id  TEXT,
    tool_name     TEXT,
    timestamp     REAL NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS memories (
    id            TEXT PRIMARY KEY,
    session_id    TEXT,
    user_id       TEXT,
    content       TEXT NOT NULL,
    importance    REAL NOT NULL DEFAULT 1.0,
    access_count  INTEGER NOT NULL DEFAULT 0,
    created_at    REAL NOT NULL,
    accessed_at   REAL NOT NULL,
    tags          TEXT,
    CHECK ((session_id IS NULL) <> (user_id IS NULL))
);

CREATE TABLE IF NOT EXISTS tool_calls (
    id           TEXT PRIMARY KEY,
    session_id   TEXT NOT NULL,
    message_id   TEXT,
    tool_name    TEXT NOT NULL,
    parameters   TEXT NOT NULL,
    result       TEXT,
    success      INTEGER NOT NULL DEFAULT 0,
    error        TEXT,
    duration_ms  REAL,
    timestamp    REAL NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
    FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_memories_rank ON memories(importance DESC, accessed_at DESC);
CREATE INDEX IF NOT EXISTS idx_tool_calls_session ON tool_calls(session_id, timestamp);
"""

MEMORY_ORDER = "ORDER BY importance DESC, accessed_at DESC, id ASC"


def new_id() -> str:
    """Generate a unique entity id."""
    return uuid.uuid4().hex


class MemoryStore:
    """Persistent storage backed by a single SQLite database.

    All access goes through one connection guarded by a lock, so writes
    are serialized and every statement sees a consistent database. The
    retention sweep deletes with single statements, never leaving a fact
    half-deleted.
    """

    def __init__(
        self,
        db_path: Path | str,
        expiry: MemoryExpiryConfig | None = None,
        scorer: MemoryScorer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Open the store, create the schema and run the startup sweep.

        Args:
            db_path: Path to the SQLite database file, or ':memory:'.
            expiry: Retention policy; defaults to MemoryExpiryConfig().
            scorer: Matching strategy for search_memories.
            clock: Source of epoch seconds.
        """
        self.db_path = Path(db_path)
        self.expiry = expiry or MemoryExpiryConfig()
        self.scorer = scorer or SubstringScorer()
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

        self.init_db()

        if self.expiry.enabled and self.expiry.cleanup_on_startup:
            self.sweep_retention()

        logger.info(f"Memory store ready: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work under the store lock, committed atomically."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    def init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to initialize schema: {e}") from e

    # Sessions

    def create_session(
        self,
        session_id: str,
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> Session:
        """Create a session, or return it if it already exists for this user.

        Raises:
            AlreadyExistsError: If the session exists for another user.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
            if row is not None:
                if row["user_id"] != user_id:
                    raise AlreadyExistsError(
                        f"Session {session_id} belongs to another user"
                    )
                return self._row_to_session(row)

            now = self._clock()
            conn.execute(
                """
                INSERT INTO sessions (id, user_id, created_at, updated_at, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session_id, user_id, now, now, json.dumps(metadata or {})),
            )

        logger.debug(f"Created session {session_id} for user {user_id}")
        return Session(
            id=session_id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )

    def get_session(self, session_id: str) -> Session | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def session_exists(self, session_id: str) -> bool:
        return self.get_session(session_id) is not None

    def list_sessions(self, user_id: str) -> list[Session]:
        """List a user's sessions, most recently active first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session with its messages and tool records.

        Memory facts are kept.
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0

    # Messages

    def append_message(
        self,
        session_id: str,
        role: Role | str,
        content: str,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
    ) -> Message:
        """Append a message to a session and bump the session's updated_at.

        Timestamps never decrease within a session.

        Raises:
            NotFoundError: If the session does not exist.
        """
        role = Role(role)
        with self._transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM sessions WHERE id = ?", (session_id,)
            ).fetchone() is None:
                raise NotFoundError(f"Session not found: {session_id}")

            last = conn.execute(
                "SELECT MAX(timestamp) AS ts FROM messages WHERE session_id = ?",
                (session_id,),
            ).fetchone()["ts"]
            timestamp = self._clock()
            if last is not None and timestamp < last:
                timestamp = last

            message = Message(
                id=new_id(),
                session_id=session_id,
                role=role,
                content=content,
                timestamp=timestamp,
                tool_call_id=tool_call_id,
                tool_name=tool_name,
            )
            conn.execute(
                """
                INSERT INTO messages
                    (id, session_id, role, content, tool_call_id, tool_name, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    session_id,
                    role.value,
                    content,
                    tool_call_id,
                    tool_name,
                    timestamp,
                ),
            )
            conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (timestamp, session_id),
            )
        return message

    def list_messages(
        self,
        session_id: str,
        limit: int | None = None,
        role: Role | str | None = None,
    ) -> list[Message]:
        """Get messages for a session.

        Args:
            session_id: The session identifier.
            limit: None for the full history, oldest first. Otherwise the
                most recent ``limit`` messages, NEWEST FIRST.
            role: Only return messages with this role.

        Returns:
            List of messages.
        """
        if limit is not None and limit <= 0:
            return []

        query = "SELECT * FROM messages WHERE session_id = ?"
        params: list[Any] = [session_id]
        if role is not None:
            query += " AND role = ?"
            params.append(Role(role).value)

        if limit is None:
            query += " ORDER BY timestamp ASC, rowid ASC"
        else:
            query += " ORDER BY timestamp DESC, rowid DESC LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_message(row) for row in rows]

    def clear_messages(self, session_id: str) -> int:
        """Delete every message of a session. Returns the count deleted."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM messages WHERE session_id = ?", (session_id,)
            )
        logger.debug(f"Cleared {cursor.rowcount} messages for session {session_id}")
        return cursor.rowcount

    # Memories

    def add_memory(
        self,
        content: str,
        scope: MemoryScope,
        importance: float = 1.0,
        tags: Iterable[str] | None = None,
    ) -> str:
        """Store a fact and return its id.

        Importance is not range-checked; negative values rank last.
        """
        fact_id = new_id()
        now = self._clock()
        tags_json = json.dumps(sorted(set(tags))) if tags else None

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO memories
                    (id, session_id, user_id, content, importance,
                     access_count, created_at, accessed_at, tags)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    fact_id,
                    scope.session_id,
                    scope.user_id,
                    content,
                    float(importance),
                    now,
                    now,
                    tags_json,
                ),
            )
        logger.debug(f"Added memory {fact_id} ({importance})")
        return fact_id

    def get_memory(self, fact_id: str) -> MemoryFact | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM memories WHERE id = ?", (fact_id,)
            ).fetchone()
            if row is None:
                return None
            return self._touch(conn, [row])[0]

    def delete_memory(self, fact_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM memories WHERE id = ?", (fact_id,))
        return cursor.rowcount > 0

    def search_memories(
        self, query: str, scope: MemoryScope, limit: int = 10
    ) -> list[MemoryFact]:
        """Find facts visible to ``scope`` whose content matches ``query``.

        A session scope sees its own facts and those of the owning user; a
        user scope sees that user's facts. Results are ordered by
        importance, then most recent access. Served facts get their access
        stats bumped.
        """
        if limit <= 0:
            return []

        with self._transaction() as conn:
            if scope.is_user:
                rows = conn.execute(
                    f"SELECT * FROM memories WHERE user_id = ? {MEMORY_ORDER}",
                    (scope.user_id,),
                ).fetchall()
            else:
                owner = conn.execute(
                    "SELECT user_id FROM sessions WHERE id = ?", (scope.session_id,)
                ).fetchone()
                rows = conn.execute(
                    f"""
                    SELECT * FROM memories WHERE session_id = ? OR user_id = ?
                    {MEMORY_ORDER}
                    """,
                    (scope.session_id, owner["user_id"] if owner else None),
                ).fetchall()

            matched = [
                row for row in rows if self.scorer.matches(query, row["content"])
            ]
            return self._touch(conn, matched[:limit])

    def list_by_user(self, user_id: str, limit: int = 100) -> list[MemoryFact]:
        """Get a user's cross-session facts, most important first."""
        if limit <= 0:
            return []

        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM memories WHERE user_id = ? {MEMORY_ORDER} LIMIT ?",
                (user_id, limit),
            ).fetchall()
            return self._touch(conn, rows)

    def list_session_memories(self, session_id: str) -> list[MemoryFact]:
        """Get the facts scoped to one session, oldest first.

        Access stats are left untouched.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM memories WHERE session_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (session_id,),
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def count_memories(self, user_id: str) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM memories WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return row["count"]

    def sweep_retention(
        self,
        policy: MemoryExpiryConfig | None = None,
        user_id: str | None = None,
    ) -> SweepResult:
        """Delete aged-out and surplus user-scoped facts.

        For each user (or only ``user_id``), first delete facts older than
        ``max_age_days`` whose importance is below ``min_importance``, then
        trim the remainder to ``max_memories_per_user``, evicting by
        ascending (importance, accessed_at, id).

        Args:
            policy: Retention policy; defaults to the store's own.
            user_id: Restrict the sweep to one user.

        Returns:
            SweepResult with the number of facts deleted by each pass.
        """
        policy = policy or self.expiry
        if not policy.enabled:
            logger.debug("Memory retention disabled, skipping sweep")
            return SweepResult()

        start = time.monotonic()
        cutoff = self._clock() - policy.max_age_days * SECONDS_PER_DAY

        if user_id is not None:
            users = [user_id]
        else:
            with self._transaction() as conn:
                users = [
                    row["user_id"]
                    for row in conn.execute(
                        "SELECT DISTINCT user_id FROM memories WHERE user_id IS NOT NULL"
                    ).fetchall()
                ]

        aged_out = 0
        evicted = 0
        for user in users:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    DELETE FROM memories
                    WHERE user_id = ? AND created_at < ? AND importance < ?
                    """,
                    (user, cutoff, policy.min_importance),
                )
                aged_out += cursor.rowcount

                count = conn.execute(
                    "SELECT COUNT(*) AS count FROM memories WHERE user_id = ?",
                    (user,),
                ).fetchone()["count"]
                excess = count - max(policy.max_memories_per_user, 0)
                if excess > 0:
                    cursor = conn.execute(
                        """
                        DELETE FROM memories WHERE id IN (
                            SELECT id FROM memories WHERE user_id = ?
                            ORDER BY importance ASC, accessed_at ASC, id ASC
                            LIMIT ?
                        )
                        """,
                        (user, excess),
                    )
                    evicted += cursor.rowcount

        result = SweepResult(aged_out=aged_out, evicted=evicted)
        duration_ms = (time.monotonic() - start) * 1000
        if result.total:
            logger.info(
                f"Retention sweep removed {result.total} memories "
                f"({aged_out} aged out, {evicted} evicted) in {duration_ms:.0f}ms"
            )
        else:
            logger.debug(f"Retention sweep found nothing to remove ({duration_ms:.0f}ms)")
        return result

    # Tool calls

    def add_tool_call(self, record: ToolInvocationRecord) -> None:
        """Write a tool invocation audit record."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO tool_calls
                    (id, session_id, message_id, tool_name, parameters, result,
                     success, error, duration_ms, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.session_id,
                    record.message_id,
                    record.tool_name,
                    json.dumps(record.parameters, default=str),
                    json.dumps(record.result, default=str)
                    if record.result is not None
                    else None,
                    1 if record.success else 0,
                    record.error,
                    record.duration_ms,
                    record.timestamp,
                ),
            )
        logger.debug(f"Recorded tool call {record.tool_name} ({record.success})")

    def list_tool_calls(
        self, session_id: str, tool_name: str | None = None
    ) -> list[ToolInvocationRecord]:
        """Get tool records for a session, newest first."""
        with self._transaction() as conn:
            if tool_name is None:
                rows = conn.execute(
                    """
                    SELECT * FROM tool_calls WHERE session_id = ?
                    ORDER BY timestamp DESC, rowid DESC
                    """,
                    (session_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM tool_calls WHERE session_id = ? AND tool_name = ?
                    ORDER BY timestamp DESC, rowid DESC
                    """,
                    (session_id, tool_name),
                ).fetchall()
        return [self._row_to_tool_call(row) for row in rows]

    # Lifecycle

    def checkpoint(self) -> None:
        """Fold the WAL back into the main database file."""
        with self._transaction() as conn:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Memory store closed")

    def _touch(
        self, conn: sqlite3.Connection, rows: list[sqlite3.Row]
    ) -> list[MemoryFact]:
        """Record that ``rows`` are being served and return them as facts."""
        now = self._clock()
        conn.executemany(
            """
            UPDATE memories SET access_count = access_count + 1, accessed_at = ?
            WHERE id = ?
            """,
            [(now, row["id"]) for row in rows],
        )
        return [
            self._row_to_fact(row, access_count=row["access_count"] + 1, accessed_at=now)
            for row in rows
        ]

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            role=Role(row["role"]),
            content=row["content"],
            timestamp=row["timestamp"],
            tool_call_id=row["tool_call_id"],
            tool_name=row["tool_name"],
        )

    def _row_to_fact(
        self,
        row: sqlite3.Row,
        access_count: int | None = None,
        accessed_at: float | None = None,
    ) -> MemoryFact:
        """Convert a database row to a MemoryFact."""
        return MemoryFact(
            id=row["id"],
            scope=MemoryScope(session_id=row["session_id"], user_id=row["user_id"]),
            content=row["content"],
            importance=row["importance"],
            access_count=row["access_count"] if access_count is None else access_count,
            tags=frozenset(json.loads(row["tags"])) if row["tags"] else frozenset(),
            created_at=row["created_at"],
            accessed_at=row["accessed_at"] if accessed_at is None else accessed_at,
        )

    def _row_to_tool_call(self, row: sqlite3.Row) -> ToolInvocationRecord:
        return ToolInvocationRecord(
            id=row["id"],
            session_id=row["session_id"],
            message_id=row["message_id"],
            tool_name=row["tool_name"],
            parameters=json.loads(row["parameters"]),
            result=json.loads(row["result"]) if row["result"] is not None else None,
            success=bool(row["success"]),
            error=row["error"],
            duration_ms=row["duration_ms"],
            timestamp=row["timestamp"],
        )
