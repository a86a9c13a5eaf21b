"""Durable storage for conversation history."""

import asyncio
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class ConversationRecord:
    """Raw persisted conversation. Turns are unvalidated dicts."""

    conversation_key: str
    turns: list[Any]
    last_activity: float


class ConversationStore(Protocol):
    """Durable key-value store for conversations."""

    async def load(self, conversation_key: str, ttl_seconds: float) -> ConversationRecord | None:
        """Load a conversation unless it has been inactive for longer than the TTL."""
        ...

    async def upsert(
        self, conversation_key: str, turns: list[dict[str, Any]], last_activity: float
    ) -> None:
        """Create or replace a conversation."""
        ...

    async def delete(self, conversation_key: str) -> None:
        """Delete a conversation."""
        ...

    async def purge_expired(self, ttl_seconds: float) -> int:
        """Delete every conversation inactive for longer than the TTL."""
        ...


class SQLiteConversationStore:
    """Conversation store backed by SQLite.

    SQLite has no native TTL, so expiry is emulated by filtering on
    ``last_activity`` at read time and by ``purge_expired``.
    """

    def __init__(self, db_path: Path, max_messages: int = 20) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            max_messages: Turns kept per conversation on write.
        """
        self.db_path = db_path
        self.max_messages = max_messages
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
        """Create the conversations table if it doesn't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    conversation_key  TEXT PRIMARY KEY,
                    messages          TEXT NOT NULL DEFAULT '[]',
                    last_activity     REAL NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversations_activity "
                "ON conversations(last_activity)"
            )
            conn.commit()

    def _load(self, conversation_key: str, ttl_seconds: float) -> ConversationRecord | None:
        cutoff = time.time() - ttl_seconds
        with self._lock:
            row = self._get_connection().execute(
                "SELECT conversation_key, messages, last_activity FROM conversations "
                "WHERE conversation_key = ? AND last_activity >= ?",
                (conversation_key, cutoff),
            ).fetchone()
        if row is None:
            return None

        try:
            turns = json.loads(row["messages"])
        except json.JSONDecodeError:
            logger.warning(f"Corrupt conversation record for {conversation_key}, ignoring")
            return None
        if not isinstance(turns, list):
            return None

        return ConversationRecord(row["conversation_key"], turns, row["last_activity"])

    def _upsert(
        self, conversation_key: str, turns: list[dict[str, Any]], last_activity: float
    ) -> None:
        payload = json.dumps(turns[-self.max_messages:], ensure_ascii=False)
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO conversations (conversation_key, messages, last_activity)
                VALUES (?, ?, ?)
                ON CONFLICT(conversation_key) DO UPDATE SET
                    messages = excluded.messages,
                    last_activity = excluded.last_activity
                """,
                (conversation_key, payload, last_activity),
            )
            conn.commit()

    def _delete(self, conversation_key: str) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "DELETE FROM conversations WHERE conversation_key = ?", (conversation_key,)
            )
            conn.commit()

    def _purge_expired(self, ttl_seconds: float) -> int:
        cutoff = time.time() - ttl_seconds
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                "DELETE FROM conversations WHERE last_activity < ?", (cutoff,)
            )
            conn.commit()
            return cursor.rowcount

    async def load(self, conversation_key: str, ttl_seconds: float) -> ConversationRecord | None:
        return await asyncio.to_thread(self._load, conversation_key, ttl_seconds)

    async def upsert(
        self, conversation_key: str, turns: list[dict[str, Any]], last_activity: float
    ) -> None:
        await asyncio.to_thread(self._upsert, conversation_key, turns, last_activity)

    async def delete(self, conversation_key: str) -> None:
        await asyncio.to_thread(self._delete, conversation_key)

    async def purge_expired(self, ttl_seconds: float) -> int:
        """Delete conversations inactive for longer than the TTL."""
        return await asyncio.to_thread(self._purge_expired, ttl_seconds)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
