"""Vector index for memory embeddings.

``SQLiteVectorIndex`` is a brute-force cosine scan over vectors kept in SQLite.
It is fine for a few thousand memories per user; swap in a real vector
database behind the same ``VectorIndex`` protocol beyond that.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    """A nearest-neighbour result."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    """Similarity index keyed by string ids."""

    async def upsert(self, vector_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        ...

    async def query(
        self,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours by cosine similarity, best first.

        ``filter`` is an exact-match constraint on metadata fields.
        """
        ...

    async def delete(self, vector_ids: list[str]) -> None:
        ...


def normalize(vector: list[float] | np.ndarray) -> np.ndarray:
    """L2-normalize to float32. Zero vectors are returned unchanged."""
    vec = np.asarray(vector, dtype="float32")
    norm = np.linalg.norm(vec)
    if norm == 0:
        return vec
    return vec / norm


def _matches(metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    if not filter:
        return True
    return all(metadata.get(k) == v for k, v in filter.items())


class SQLiteVectorIndex:
    """Vector index stored in SQLite, searched with numpy."""

    def __init__(self, db_path: Path) -> None:
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
        """Create the vectors table if it doesn't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memory_vectors (
                    id          TEXT PRIMARY KEY,
                    embedding   BLOB NOT NULL,
                    dimensions  INTEGER NOT NULL,
                    metadata    TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.commit()

    def _upsert(self, vector_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        vec = normalize(vector)
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO memory_vectors (id, embedding, dimensions, metadata)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    embedding = excluded.embedding,
                    dimensions = excluded.dimensions,
                    metadata = excluded.metadata
                """,
                (vector_id, vec.tobytes(), int(vec.shape[0]), json.dumps(metadata)),
            )
            conn.commit()

    def _query(
        self,
        vector: list[float],
        top_k: int,
        include_metadata: bool,
        filter: dict[str, Any] | None,
    ) -> list[VectorMatch]:
        if top_k <= 0:
            return []
        query = normalize(vector)

        with self._lock:
            rows = self._get_connection().execute(
                "SELECT id, embedding, metadata FROM memory_vectors WHERE dimensions = ?",
                (int(query.shape[0]),),
            ).fetchall()

        ids: list[str] = []
        metadatas: list[dict[str, Any]] = []
        embeddings: list[np.ndarray] = []
        for row in rows:
            metadata = json.loads(row["metadata"])
            if not _matches(metadata, filter):
                continue
            ids.append(row["id"])
            metadatas.append(metadata)
            embeddings.append(np.frombuffer(row["embedding"], dtype="float32"))

        if not ids:
            return []

        scores = np.vstack(embeddings) @ query
        order = np.argsort(-scores)[:top_k]
        return [
            VectorMatch(
                id=ids[i],
                score=float(scores[i]),
                metadata=metadatas[i] if include_metadata else {},
            )
            for i in order
        ]

    def _delete(self, vector_ids: list[str]) -> None:
        if not vector_ids:
            return
        placeholders = ",".join("?" for _ in vector_ids)
        with self._lock:
            conn = self._get_connection()
            conn.execute(f"DELETE FROM memory_vectors WHERE id IN ({placeholders})", vector_ids)
            conn.commit()

    def count(self) -> int:
        with self._lock:
            row = self._get_connection().execute("SELECT COUNT(*) FROM memory_vectors").fetchone()
        return row[0]

    async def upsert(self, vector_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        await asyncio.to_thread(self._upsert, vector_id, vector, metadata)

    async def query(
        self,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        return await asyncio.to_thread(self._query, vector, top_k, include_metadata, filter)

    async def delete(self, vector_ids: list[str]) -> None:
        await asyncio.to_thread(self._delete, list(vector_ids))

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
