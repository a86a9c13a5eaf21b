"""Long-term semantic memory: storage, scoped recall and housekeeping."""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from typing import Any, Callable

from ..config import MemoryConfig
from ..llm.client import ResilientModelClient
from ..llm.content import Turn
from .extractor import FactExtractor
from .models import (
    MatchResult,
    MemoryFact,
    MemoryPreferences,
    MemoryStats,
    MemoryType,
    RecalledMemory,
    StoredMemory,
    clamp_importance,
)
from .records import MemoryRecords
from .vectors import VectorIndex

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def is_memory_in_scope(
    memory_tenant: str | None,
    query_tenant: str | None,
    prefs: MemoryPreferences,
) -> bool:
    """Whether a memory of the same user may be recalled in this context.

    ``None`` tenants mean direct messages. DM memories only reach tenant
    channels when the user combines them, and tenant memories only reach
    DMs the same way. ``global_server_memories`` off restricts tenant
    memories to the tenant they were formed in.
    """
    if query_tenant is not None:
        if memory_tenant is None:
            return prefs.combine_dm_with_server
        if prefs.global_server_memories:
            return True
        return memory_tenant == query_tenant

    if prefs.combine_dm_with_server:
        return True
    return memory_tenant is None


class MemoryStore:
    """Per-user memories over a vector index and a metadata store.

    Vectors are always removed before their rows, so a failure part-way
    leaves at worst an orphan row (invisible to recall) rather than an
    orphan vector pointing at nothing.
    """

    def __init__(
        self,
        client: ResilientModelClient,
        index: VectorIndex,
        records: MemoryRecords,
        config: MemoryConfig | None = None,
        extractor: FactExtractor | None = None,
        embedding_model: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.index = index
        self.records = records
        self.config = config or MemoryConfig()
        self.extractor = extractor
        self.embedding_model = embedding_model
        self._clock = clock

    async def _embed(self, text: str) -> list[float]:
        return await self.client.embed(text, model=self.embedding_model)

    @staticmethod
    def _metadata(memory: StoredMemory) -> dict[str, Any]:
        return {
            "user_id": memory.user_id,
            "tenant_id": memory.tenant_id,
            "key": memory.key,
            "value": memory.value,
            "importance": memory.importance,
            "memory_type": memory.memory_type.value,
        }

    async def _find_similar(
        self,
        vector: list[float],
        user_id: str,
        tenant_id: str | None,
        memory_type: MemoryType | None = None,
    ) -> tuple[StoredMemory, float] | None:
        """Closest memory in the same scope, if above the dedup threshold."""
        filter: dict[str, Any] = {"user_id": user_id, "tenant_id": tenant_id}
        if memory_type is not None:
            filter["memory_type"] = memory_type.value

        matches = await self.index.query(vector, top_k=1, filter=filter)
        if not matches or matches[0].score < self.config.dedup_threshold:
            return None

        best = matches[0]
        rows = await asyncio.to_thread(self.records.get_by_vector_ids, [best.id])
        row = rows.get(best.id)
        if row is None:
            return None
        return row, best.score

    async def extract_facts(
        self, recent_turns: list[Turn], user_id: str, tenant_id: str | None
    ) -> list[MemoryFact]:
        """Ask the extraction model for facts worth keeping. Never raises."""
        if self.extractor is None:
            return []
        facts = await self.extractor.extract(recent_turns)
        if facts:
            logger.debug(
                f"Extracted {len(facts)} facts for user {user_id} "
                f"(context: {tenant_id or 'DM'})"
            )
        return facts

    async def store_memory(
        self,
        fact: MemoryFact,
        user_id: str,
        tenant_id: str | None,
        context: str,
    ) -> bool:
        """Store a fact, merging it into a near-duplicate when one exists.

        Returns:
            True if the fact was stored or merged.
        """
        try:
            vector = await self._embed(fact.embedding_text)
            now = self._clock()

            if self.config.dedup_threshold > 0:
                try:
                    similar = await self._find_similar(
                        vector, user_id, tenant_id, fact.memory_type
                    )
                except Exception as e:
                    logger.debug(f"Dedup check failed, proceeding with insert: {e}")
                    similar = None

                if similar is not None:
                    existing, score = similar
                    await self._merge(existing, fact, vector, context, now)
                    logger.debug(
                        f"Merged memory '{fact.key}' (score: {score:.3f}) for user {user_id}"
                    )
                    return True

            memory = StoredMemory(
                id=None,
                user_id=user_id,
                tenant_id=tenant_id,
                key=fact.key,
                value=fact.value,
                importance=fact.importance,
                memory_type=fact.memory_type,
                context=context,
                vector_id=uuid.uuid4().hex,
                created_at=now,
                last_accessed_at=now,
            )
            await self.index.upsert(memory.vector_id, vector, self._metadata(memory))
            try:
                await asyncio.to_thread(self.records.insert, memory)
            except Exception:
                await self.index.delete([memory.vector_id])
                raise

            evicted = await self._evict(user_id, tenant_id)
            if evicted:
                logger.debug(
                    f"Evicted {evicted} memories for user {user_id} "
                    f"(context: {tenant_id or 'DM'})"
                )

            logger.debug(f"Stored memory: {fact.key} for user {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to store memory: {e}")
            return False

    async def _merge(
        self,
        existing: StoredMemory,
        fact: MemoryFact,
        vector: list[float],
        context: str,
        now: float,
    ) -> None:
        assert existing.id is not None
        importance = clamp_importance(math.floor((existing.importance + fact.importance) / 2 + 0.5))
        await asyncio.to_thread(
            self.records.merge, existing.id, fact.value, importance, context, now
        )
        existing.value = fact.value
        existing.importance = importance
        await self.index.upsert(existing.vector_id, vector, self._metadata(existing))

    async def _evict(self, user_id: str, tenant_id: str | None) -> int:
        """Trim a scope down to capacity. Returns the number evicted."""
        victims = await asyncio.to_thread(
            self.records.eviction_candidates,
            user_id,
            tenant_id,
            self.config.max_memories_per_scope,
        )
        if not victims:
            return 0
        return await self._delete_memories(victims)

    async def _delete_memories(self, memories: list[StoredMemory]) -> int:
        """Delete vectors, then rows. Returns rows deleted."""
        if not memories:
            return 0
        await self.index.delete([m.vector_id for m in memories])
        ids = [m.id for m in memories if m.id is not None]
        try:
            return await asyncio.to_thread(self.records.delete, ids)
        except Exception as e:
            logger.error(
                f"Deleted {len(memories)} vectors but failed to delete their rows: {e}"
            )
            raise

    async def recall_memories(
        self,
        query: str,
        user_id: str,
        tenant_id: str | None,
        limit: int = 5,
        prefs: MemoryPreferences | None = None,
    ) -> list[RecalledMemory]:
        """Memories of this user relevant to the query, best first.

        Scoping follows ``is_memory_in_scope``. Fewer than ``limit`` results
        may come back when the nearest neighbours are out of scope.
        """
        if limit <= 0 or not query.strip():
            return []
        prefs = prefs or MemoryPreferences()

        try:
            vector = await self._embed(query)
            matches = await self.index.query(
                vector, top_k=limit * 3, filter={"user_id": user_id}
            )
            rows = await asyncio.to_thread(
                self.records.get_by_vector_ids, [m.id for m in matches]
            )

            recalled: list[RecalledMemory] = []
            for match in matches:
                row = rows.get(match.id)
                if row is None or row.id is None or row.user_id != user_id:
                    continue
                if not is_memory_in_scope(row.tenant_id, tenant_id, prefs):
                    continue
                recalled.append(
                    RecalledMemory(
                        id=row.id,
                        key=row.key,
                        value=row.value,
                        score=match.score,
                        context=row.context,
                    )
                )
                if len(recalled) >= limit:
                    break

            if recalled:
                await asyncio.to_thread(
                    self.records.touch, [m.id for m in recalled], self._clock()
                )

            logger.debug(f"Recalled {len(recalled)} memories for user {user_id}")
            return recalled
        except Exception as e:
            logger.error(f"Failed to recall memories: {e}")
            return []

    async def forget_user(self, user_id: str, tenant_id: str | None) -> int:
        """Delete every memory of a user in one scope.

        Returns:
            Number of memories deleted.
        """
        try:
            memories = await asyncio.to_thread(
                self.records.list_for_user, user_id, tenant_id, -1
            )
            deleted = await self._delete_memories(memories)
        except Exception as e:
            logger.error(f"Failed to forget user {user_id}: {e}")
            return 0

        logger.info(f"Forgot {deleted} memories for user {user_id}")
        return deleted

    async def list_memories(
        self, user_id: str, tenant_id: str | None, limit: int = 50
    ) -> list[StoredMemory]:
        return await asyncio.to_thread(self.records.list_for_user, user_id, tenant_id, limit)

    async def prune_stale(self) -> int:
        """Delete old memories that are unimportant and rarely used."""
        cutoff = self._clock() - self.config.prune_after_days * SECONDS_PER_DAY
        try:
            stale = await asyncio.to_thread(
                self.records.stale,
                cutoff,
                self.config.prune_max_importance,
                self.config.prune_max_access_count,
            )
            deleted = await self._delete_memories(stale)
        except Exception as e:
            logger.error(f"Failed to prune memories: {e}")
            return 0

        logger.info(f"Pruned {deleted} stale memories")
        return deleted

    async def get_stats(self) -> MemoryStats:
        try:
            return await asyncio.to_thread(self.records.stats)
        except Exception as e:
            logger.error(f"Failed to get memory stats: {e}")
            return MemoryStats()

    async def update_memory_by_match(
        self,
        description: str,
        new_value: str,
        user_id: str,
        tenant_id: str | None,
    ) -> MatchResult:
        """Find the memory closest to a description and replace its value."""
        try:
            similar = await self._find_similar(await self._embed(description), user_id, tenant_id)
            if similar is None:
                return MatchResult(found=False)

            existing, score = similar
            assert existing.id is not None
            old_value = existing.value
            now = self._clock()
            await asyncio.to_thread(self.records.update_value, existing.id, new_value, now)

            existing.value = new_value
            vector = await self._embed(f"{existing.key}: {new_value}")
            await self.index.upsert(existing.vector_id, vector, self._metadata(existing))

            logger.debug(
                f"Updated memory '{existing.key}' for user {user_id} (score: {score:.3f})"
            )
            return MatchResult(found=True, old_value=old_value, new_value=new_value)
        except Exception as e:
            logger.error(f"Failed to update memory by match: {e}")
            return MatchResult(found=False)

    async def delete_memory_by_match(
        self,
        description: str,
        user_id: str,
        tenant_id: str | None,
    ) -> MatchResult:
        """Find the memory closest to a description and delete it."""
        try:
            similar = await self._find_similar(await self._embed(description), user_id, tenant_id)
            if similar is None:
                return MatchResult(found=False)

            existing, score = similar
            await self._delete_memories([existing])
            logger.debug(
                f"Deleted memory '{existing.key}' for user {user_id} (score: {score:.3f})"
            )
            return MatchResult(found=True, old_value=existing.value)
        except Exception as e:
            logger.error(f"Failed to delete memory by match: {e}")
            return MatchResult(found=False)
