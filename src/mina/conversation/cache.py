"""Short-term conversation memory with durable write-back."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..config import CacheConfig
from ..llm.content import Attribution, Part, Role, TextPart, Turn
from .store import ConversationStore

logger = logging.getLogger(__name__)


def dm_conversation_key(user_id: str) -> str:
    """Conversation key for a direct message thread."""
    return f"dm:{user_id}"


def channel_conversation_key(tenant_id: str, channel_id: str) -> str:
    """Conversation key for a tenant channel."""
    return f"tenant:{tenant_id}:channel:{channel_id}"


@dataclass
class ConversationEntry:
    """Cached turns for one conversation."""

    turns: list[Turn]
    created_at: float
    last_activity_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return (now - self.last_activity_at) > ttl_seconds


class ConversationContextCache:
    """In-process cache of recent turns backed by a durable store.

    Reads are served from memory when possible. A cache miss loads from the
    store once per key, however many callers are waiting. Writes are
    debounced: a burst of appends produces one store write with the state at
    the time the timer fires. ``clear`` leaves a tombstone so a slow load
    cannot bring cleared history back.
    """

    def __init__(
        self,
        store: ConversationStore | None = None,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[str, ConversationEntry] = {}
        self._tombstones: dict[str, float] = {}
        self._loads: dict[str, asyncio.Task[None]] = {}
        self._write_timers: dict[str, asyncio.TimerHandle] = {}
        self._writes: set[asyncio.Task[None]] = set()
        self._sweep_task: asyncio.Task[None] | None = None
        self._closed = False

    @staticmethod
    def format_with_attribution(turn: Turn) -> Turn:
        """Prefix user text with the speaker's display name.

        Non-text parts (images, function calls) are preserved.
        """
        if turn.role != "user" or turn.attribution is None:
            return turn
        name = turn.attribution.display_name or turn.attribution.username
        if not name:
            return turn

        text = turn.text
        non_text = turn.non_text_parts
        if text:
            parts: list[Part] = [TextPart(f"{name}: {text}"), *non_text]
        else:
            parts = non_text or list(turn.parts)
        return Turn(role="user", parts=parts, timestamp=turn.timestamp, attribution=turn.attribution)

    def _is_tombstoned(self, key: str, now: float) -> bool:
        cleared_at = self._tombstones.get(key)
        if cleared_at is None:
            return False
        if now - cleared_at > self.config.ttl_seconds:
            del self._tombstones[key]
            return False
        return True

    def _trim(self, entry: ConversationEntry) -> None:
        overflow = len(entry.turns) - self.config.max_messages
        if overflow > 0:
            del entry.turns[:overflow]

    def append(
        self,
        conversation_key: str,
        role: Role,
        content: str | list[Part],
        attribution: Attribution | None = None,
    ) -> None:
        """Append a turn.

        Args:
            conversation_key: The conversation to append to.
            role: "user" or "assistant".
            content: Plain text, or a list of parts.
            attribution: Speaker details, kept for user turns only.
        """
        if isinstance(content, str):
            if not content.strip():
                return
            parts: list[Part] = [TextPart(content)]
        else:
            parts = [p for p in content if not (isinstance(p, TextPart) and not p.text.strip())]
            if not parts:
                return

        now = self._clock()
        entry = self._entries.get(conversation_key)
        if entry is None or entry.is_expired(now, self.config.ttl_seconds):
            entry = ConversationEntry(turns=[], created_at=now, last_activity_at=now)
            self._entries[conversation_key] = entry

        entry.turns.append(
            Turn(
                role=role,
                parts=parts,
                timestamp=now,
                attribution=attribution if role == "user" else None,
            )
        )
        self._trim(entry)
        entry.last_activity_at = max(entry.last_activity_at, now)
        self._tombstones.pop(conversation_key, None)

        logger.debug(
            f"Turn appended - Key: {conversation_key}, Role: {role}, Count: {len(entry.turns)}"
        )
        self._schedule_write(conversation_key)

    async def get_history(self, conversation_key: str, max_messages: int = 9) -> list[Turn]:
        """Get the most recent turns, oldest first.

        Args:
            conversation_key: The conversation to read.
            max_messages: Maximum number of turns to return.

        Returns:
            Up to ``max_messages`` turns. Empty for unknown, expired or
            cleared conversations.
        """
        if max_messages <= 0:
            return []

        entry = self._entries.get(conversation_key)
        if entry is not None:
            if not entry.is_expired(self._clock(), self.config.ttl_seconds):
                return list(entry.turns[-max_messages:])
            del self._entries[conversation_key]

        if self.store is None or self._is_tombstoned(conversation_key, self._clock()):
            return []

        task = self._loads.get(conversation_key)
        if task is None:
            task = asyncio.create_task(self._load(conversation_key))
            self._loads[conversation_key] = task
            task.add_done_callback(functools.partial(self._forget_load, conversation_key))
        await asyncio.shield(task)

        entry = self._entries.get(conversation_key)
        if entry is None or entry.is_expired(self._clock(), self.config.ttl_seconds):
            return []
        return list(entry.turns[-max_messages:])

    def _forget_load(self, key: str, task: asyncio.Task[None]) -> None:
        if self._loads.get(key) is task:
            del self._loads[key]

    async def _load(self, key: str) -> None:
        """Load one conversation from the store into the cache."""
        assert self.store is not None
        try:
            record = await self.store.load(key, self.config.ttl_seconds)
        except Exception as e:
            logger.warning(f"Failed to load conversation {key}: {e}")
            return

        # A clear() during the load unregisters it and leaves a tombstone.
        if self._loads.get(key) is not asyncio.current_task():
            logger.debug(f"Discarding stale load for {key}")
            return
        now = self._clock()
        if record is None or self._is_tombstoned(key, now):
            return

        turns = [t for t in (Turn.from_dict(raw, now) for raw in record.turns) if t is not None]
        if not turns:
            return
        turns = turns[-self.config.max_messages:]

        existing = self._entries.get(key)
        if existing is not None and not existing.is_expired(now, self.config.ttl_seconds):
            first = existing.turns[0].timestamp if existing.turns else now
            older = [t for t in turns if t.timestamp < first]
            existing.turns[:0] = older
            self._trim(existing)
            existing.created_at = min(existing.created_at, turns[0].timestamp)
            return

        self._entries[key] = ConversationEntry(
            turns=turns,
            created_at=turns[0].timestamp,
            last_activity_at=max(record.last_activity, turns[-1].timestamp),
        )
        logger.debug(f"Loaded conversation {key} from store ({len(turns)} turns)")

    def _schedule_write(self, key: str) -> None:
        if self.store is None or self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, skipping write-back for {key}")
            return

        timer = self._write_timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._write_timers[key] = loop.call_later(
            self.config.debounce_seconds, self._fire_write, key
        )

    def _fire_write(self, key: str) -> None:
        self._write_timers.pop(key, None)
        self._start_write(key)

    def _start_write(self, key: str) -> None:
        task = asyncio.get_running_loop().create_task(self._write(key))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, key: str) -> None:
        assert self.store is not None
        entry = self._entries.get(key)
        if entry is None or key in self._tombstones:
            return
        turns = [turn.to_dict() for turn in entry.turns]
        try:
            await self.store.upsert(key, turns, entry.last_activity_at)
        except Exception as e:
            logger.warning(f"Failed to persist conversation {key}: {e}")

    def has_pending_write(self, conversation_key: str) -> bool:
        return conversation_key in self._write_timers

    async def clear(self, conversation_key: str) -> None:
        """Forget a conversation, in memory and in the store."""
        self._entries.pop(conversation_key, None)
        self._tombstones[conversation_key] = self._clock()
        self._loads.pop(conversation_key, None)

        timer = self._write_timers.pop(conversation_key, None)
        if timer is not None:
            timer.cancel()

        if self.store is not None:
            try:
                await self.store.delete(conversation_key)
            except Exception as e:
                logger.warning(f"Failed to delete conversation {conversation_key}: {e}")

    def sweep(self) -> int:
        """Drop expired entries and tombstones. Returns entries removed."""
        now = self._clock()
        ttl = self.config.ttl_seconds

        expired = [k for k, e in self._entries.items() if e.is_expired(now, ttl)]
        for key in expired:
            del self._entries[key]

        for key in [k for k, t in self._tombstones.items() if now - t > ttl]:
            del self._tombstones[key]

        if expired:
            logger.debug(
                f"Pruned expired conversations - Removed: {len(expired)}, "
                f"Remaining: {len(self._entries)}"
            )
        return len(expired)

    async def purge_store(self) -> int:
        """Delete expired conversations from the durable store."""
        if self.store is None:
            return 0
        try:
            purged = await self.store.purge_expired(self.config.ttl_seconds)
        except Exception as e:
            logger.warning(f"Failed to purge expired conversations: {e}")
            return 0
        if purged:
            logger.debug(f"Purged expired conversations from store - Removed: {purged}")
        return purged

    async def _sweep_loop(self) -> None:
        """Background task for periodic cleanup."""
        while True:
            try:
                await asyncio.sleep(self.config.sweep_interval)
                self.sweep()
                await self.purge_store()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Conversation sweep failed")

    def start(self) -> None:
        """Start the background sweep task."""
        self._closed = False
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def shutdown(self, flush: bool = True) -> None:
        """Stop background work.

        Args:
            flush: Write pending conversations now instead of dropping them.
        """
        self._closed = True

        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

        pending = list(self._write_timers)
        for timer in self._write_timers.values():
            timer.cancel()
        self._write_timers.clear()

        if flush and self.store is not None:
            for key in pending:
                self._start_write(key)

        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
