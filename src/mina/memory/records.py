"""SQLite storage for memory metadata."""

import sqlite3
import threading
from pathlib import Path

from .models import MemoryStats, MemoryType, StoredMemory

_COLUMNS = (
    "id, user_id, tenant_id, key, value, importance, memory_type, context, "
    "vector_id, created_at, last_accessed_at, access_count"
)


class MemoryRecords:
    """Persistent memory metadata using SQLite.

    Vectors live in a separate index and are linked by ``vector_id``. A
    "scope" is a (user_id, tenant_id) pair, where tenant_id None is the
    direct-message scope.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the memories table if it doesn't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           TEXT NOT NULL,
                    tenant_id         TEXT,
                    key               TEXT NOT NULL,
                    value             TEXT NOT NULL,
                    importance        INTEGER NOT NULL DEFAULT 5,
                    memory_type       TEXT NOT NULL DEFAULT 'user',
                    context           TEXT NOT NULL DEFAULT '',
                    vector_id         TEXT NOT NULL UNIQUE,
                    created_at        REAL NOT NULL,
                    last_accessed_at  REAL NOT NULL,
                    access_count      INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memories_scope ON memories(user_id, tenant_id)"
            )
            conn.commit()

    def insert(self, memory: StoredMemory) -> StoredMemory:
        """Insert a memory row and return it with its id."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                """
                INSERT INTO memories (
                    user_id, tenant_id, key, value, importance, memory_type,
                    context, vector_id, created_at, last_accessed_at, access_count
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.user_id,
                    memory.tenant_id,
                    memory.key,
                    memory.value,
                    memory.importance,
                    memory.memory_type.value,
                    memory.context,
                    memory.vector_id,
                    memory.created_at,
                    memory.last_accessed_at,
                    memory.access_count,
                ),
            )
            conn.commit()
            memory.id = cursor.lastrowid
        return memory

    def get(self, memory_id: int) -> StoredMemory | None:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
        return self._row_to_memory(row) if row else None

    def get_by_vector_ids(self, vector_ids: list[str]) -> dict[str, StoredMemory]:
        """Look up rows by vector id. Missing ids are left out."""
        if not vector_ids:
            return {}
        placeholders = ",".join("?" for _ in vector_ids)
        with self._lock:
            rows = self._get_connection().execute(
                f"SELECT {_COLUMNS} FROM memories WHERE vector_id IN ({placeholders})",
                vector_ids,
            ).fetchall()
        return {row["vector_id"]: self._row_to_memory(row) for row in rows}

    def merge(
        self, memory_id: int, value: str, importance: int, context: str, now: float
    ) -> None:
        """Overwrite a memory with a newer version of the same fact."""
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                UPDATE memories SET
                    value = ?, importance = ?, context = ?,
                    last_accessed_at = ?, access_count = access_count + 1
                WHERE id = ?
                """,
                (value, importance, context, now, memory_id),
            )
            conn.commit()

    def update_value(self, memory_id: int, value: str, now: float) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                UPDATE memories SET
                    value = ?, last_accessed_at = ?, access_count = access_count + 1
                WHERE id = ?
                """,
                (value, now, memory_id),
            )
            conn.commit()

    def touch(self, memory_ids: list[int], now: float) -> None:
        """Record an access on each memory."""
        if not memory_ids:
            return
        placeholders = ",".join("?" for _ in memory_ids)
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                f"""
                UPDATE memories SET
                    last_accessed_at = ?, access_count = access_count + 1
                WHERE id IN ({placeholders})
                """,
                [now, *memory_ids],
            )
            conn.commit()

    def count(self, user_id: str, tenant_id: str | None) -> int:
        """Number of memories in a scope."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT COUNT(*) FROM memories WHERE user_id = ? AND tenant_id IS ?",
                (user_id, tenant_id),
            ).fetchone()
        return row[0]

    def eviction_candidates(
        self, user_id: str, tenant_id: str | None, keep: int
    ) -> list[StoredMemory]:
        """Memories to drop so that at most ``keep`` remain in the scope.

        Lowest importance goes first, oldest first among equals.
        """
        excess = self.count(user_id, tenant_id) - keep
        if excess <= 0:
            return []
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS} FROM memories
                WHERE user_id = ? AND tenant_id IS ?
                ORDER BY importance ASC, created_at ASC, id ASC
                LIMIT ?
                """,
                (user_id, tenant_id, excess),
            ).fetchall()
        return [self._row_to_memory(row) for row in rows]

    def list_for_user(
        self, user_id: str, tenant_id: str | None, limit: int = 50
    ) -> list[StoredMemory]:
        """Memories in a scope, most important and most recently used first."""
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS} FROM memories
                WHERE user_id = ? AND tenant_id IS ?
                ORDER BY importance DESC, last_accessed_at DESC
                LIMIT ?
                """,
                (user_id, tenant_id, limit),
            ).fetchall()
        return [self._row_to_memory(row) for row in rows]

    def stale(
        self, accessed_before: float, max_importance: int, max_access_count: int
    ) -> list[StoredMemory]:
        """Memories that are old, unimportant and rarely used."""
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS} FROM memories
                WHERE last_accessed_at < ? AND importance <= ? AND access_count <= ?
                """,
                (accessed_before, max_importance, max_access_count),
            ).fetchall()
        return [self._row_to_memory(row) for row in rows]

    def delete(self, memory_ids: list[int]) -> int:
        """Delete memories by id.

        Returns:
            Number of rows deleted.
        """
        if not memory_ids:
            return 0
        placeholders = ",".join("?" for _ in memory_ids)
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                f"DELETE FROM memories WHERE id IN ({placeholders})", memory_ids
            )
            conn.commit()
            return cursor.rowcount

    def stats(self, top_n: int = 10) -> MemoryStats:
        """Aggregate statistics across all users."""
        with self._lock:
            conn = self._get_connection()
            totals = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COUNT(DISTINCT user_id) AS users,
                       COUNT(DISTINCT tenant_id) AS tenants,
                       AVG(importance) AS avg_importance,
                       SUM(access_count) AS accesses
                FROM memories
                """
            ).fetchone()
            by_type = conn.execute(
                "SELECT memory_type, COUNT(*) AS n FROM memories GROUP BY memory_type"
            ).fetchall()
            top_users = conn.execute(
                """
                SELECT user_id, COUNT(*) AS n FROM memories
                GROUP BY user_id ORDER BY n DESC, user_id ASC LIMIT ?
                """,
                (top_n,),
            ).fetchall()

        return MemoryStats(
            total=totals["total"],
            unique_users=totals["users"],
            unique_tenants=totals["tenants"],
            by_type={row["memory_type"]: row["n"] for row in by_type},
            top_users=[(row["user_id"], row["n"]) for row in top_users],
            avg_importance=round(totals["avg_importance"] or 0.0, 2),
            total_access_count=totals["accesses"] or 0,
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _row_to_memory(self, row: sqlite3.Row) -> StoredMemory:
        """Convert a database row to a StoredMemory."""
        return StoredMemory(
            id=row["id"],
            user_id=row["user_id"],
            tenant_id=row["tenant_id"],
            key=row["key"],
            value=row["value"],
            importance=row["importance"],
            memory_type=MemoryType.parse(row["memory_type"]),
            context=row["context"],
            vector_id=row["vector_id"],
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
            access_count=row["access_count"],
        )
