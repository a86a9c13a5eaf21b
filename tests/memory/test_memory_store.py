"""Tests for MemoryStore over a real SQLite index and metadata store."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from mina.config import MemoryConfig
from mina.errors import ModelClientError
from mina.llm.content import TextPart, Turn
from mina.memory import (
    MemoryFact,
    MemoryPreferences,
    MemoryRecords,
    MemoryStore,
    MemoryType,
    SQLiteVectorIndex,
)

TOPICS = ["dog", "cat", "pizza", "rust", "music"]
DAY = 86400


class KeywordEmbedder:
    """Embeds text as a bag of known topics, so similar facts collide."""

    def __init__(self):
        self.calls: list[str] = []
        self.fail = False

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ModelClientError("embedding endpoint down")
        lowered = text.lower()
        return [1.0 if topic in lowered else 0.0 for topic in TOPICS] + [0.1]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def backends(tmp_path: Path):
    db_path = tmp_path / "memory.db"
    index = SQLiteVectorIndex(db_path)
    records = MemoryRecords(db_path)
    index.init_db()
    records.init_db()
    yield index, records
    index.close()
    records.close()


def make_store(embedder, backends, clock, **config) -> MemoryStore:
    index, records = backends
    return MemoryStore(embedder, index, records, config=MemoryConfig(**config), clock=clock)


@pytest.fixture
def store(embedder, backends, clock) -> MemoryStore:
    return make_store(embedder, backends, clock)


class TestStoreMemory:
    @pytest.mark.asyncio
    async def test_store_persists_row_and_vector(self, store, backends, embedder):
        index, records = backends

        assert await store.store_memory(MemoryFact("pet", "likes dogs", 7), "u1", None, "chat")

        memories = records.list_for_user("u1", None)
        assert len(memories) == 1
        assert memories[0].value == "likes dogs"
        assert memories[0].importance == 7
        assert index.count() == 1
        assert embedder.calls == ["pet: likes dogs"]

    @pytest.mark.asyncio
    async def test_near_duplicate_is_merged(self, store, backends):
        _, records = backends

        await store.store_memory(MemoryFact("pet", "likes dogs", 4), "u1", "g1", "a")
        await store.store_memory(MemoryFact("pet", "loves dogs a lot", 7), "u1", "g1", "b")

        memories = records.list_for_user("u1", "g1")
        assert len(memories) == 1
        assert memories[0].value == "loves dogs a lot"
        assert memories[0].importance == 6
        assert memories[0].context == "b"
        assert memories[0].access_count == 1

    @pytest.mark.asyncio
    async def test_duplicates_in_other_scopes_are_kept(self, store, backends):
        _, records = backends

        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", "g1", "")
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "")
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u2", "g1", "")
        await store.store_memory(
            MemoryFact("pet", "likes dogs", memory_type=MemoryType.TOPIC), "u1", "g1", ""
        )

        assert records.stats().total == 4

    @pytest.mark.asyncio
    async def test_embedding_failure_returns_false(self, store, backends, embedder):
        index, records = backends
        embedder.fail = True

        assert await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "") is False
        assert records.stats().total == 0
        assert index.count() == 0

    @pytest.mark.asyncio
    async def test_row_failure_removes_vector(self, store, backends, monkeypatch):
        index, records = backends

        def broken_insert(memory):
            raise RuntimeError("disk full")

        monkeypatch.setattr(records, "insert", broken_insert)

        assert await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "") is False
        assert index.count() == 0


class TestEviction:
    @pytest.mark.asyncio
    async def test_evicts_least_important_oldest(self, embedder, backends, clock):
        index, records = backends
        store = make_store(embedder, backends, clock, max_memories_per_scope=3, dedup_threshold=0)

        for value, importance in [("a", 5), ("b", 2), ("c", 7), ("d", 2)]:
            await store.store_memory(MemoryFact("k", value, importance), "u1", "g1", "")
            clock.now += 1

        values = sorted(m.value for m in records.list_for_user("u1", "g1"))
        assert values == ["a", "c", "d"]
        assert index.count() == 3

    @pytest.mark.asyncio
    async def test_eviction_is_per_scope(self, embedder, backends, clock):
        _, records = backends
        store = make_store(embedder, backends, clock, max_memories_per_scope=1, dedup_threshold=0)

        await store.store_memory(MemoryFact("k", "dm"), "u1", None, "")
        await store.store_memory(MemoryFact("k", "server"), "u1", "g1", "")

        assert records.count("u1", None) == 1
        assert records.count("u1", "g1") == 1


class TestRecall:
    @pytest_asyncio.fixture
    async def seeded(self, store):
        await store.store_memory(MemoryFact("pet", "dog in DMs"), "u1", None, "")
        await store.store_memory(MemoryFact("pet", "dog named Rex"), "u1", "g1", "")
        await store.store_memory(MemoryFact("pet", "dog allergy"), "u1", "g2", "")
        await store.store_memory(MemoryFact("pet", "dog of someone else"), "u2", "g1", "")
        return store

    async def recall(self, store, tenant, **prefs) -> set[str]:
        memories = await store.recall_memories(
            "dog", "u1", tenant, limit=5, prefs=MemoryPreferences(**prefs)
        )
        return {m.value for m in memories}

    @pytest.mark.asyncio
    async def test_tenant_default_sees_all_servers(self, seeded):
        assert await self.recall(seeded, "g1") == {"dog named Rex", "dog allergy"}

    @pytest.mark.asyncio
    async def test_tenant_local_only(self, seeded):
        assert await self.recall(seeded, "g1", global_server_memories=False) == {"dog named Rex"}

    @pytest.mark.asyncio
    async def test_tenant_combined_with_dm(self, seeded):
        assert await self.recall(seeded, "g1", combine_dm_with_server=True) == {
            "dog in DMs",
            "dog named Rex",
            "dog allergy",
        }

    @pytest.mark.asyncio
    async def test_dm_default_sees_dm_only(self, seeded):
        assert await self.recall(seeded, None) == {"dog in DMs"}

    @pytest.mark.asyncio
    async def test_recall_respects_limit_and_touches(self, seeded, backends):
        _, records = backends

        memories = await seeded.recall_memories("dog", "u1", "g1", limit=1)

        assert len(memories) == 1
        assert memories[0].score == pytest.approx(1.0, abs=1e-5)
        assert records.get(memories[0].id).access_count == 1

    @pytest.mark.asyncio
    async def test_recall_failure_returns_empty(self, seeded, embedder):
        embedder.fail = True
        assert await seeded.recall_memories("dog", "u1", "g1") == []

    @pytest.mark.asyncio
    async def test_blank_query(self, seeded):
        assert await seeded.recall_memories("  ", "u1", "g1") == []


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_forget_user_exact_scope(self, store, backends):
        index, records = backends
        await store.store_memory(MemoryFact("pet", "dog"), "u1", "g1", "")
        await store.store_memory(MemoryFact("food", "pizza"), "u1", "g1", "")
        await store.store_memory(MemoryFact("pet", "dog"), "u1", None, "")

        assert await store.forget_user("u1", "g1") == 2
        assert records.count("u1", "g1") == 0
        assert records.count("u1", None) == 1
        assert index.count() == 1

    @pytest.mark.asyncio
    async def test_prune_stale(self, store, backends, clock):
        _, records = backends
        await store.store_memory(MemoryFact("pet", "dog", 2), "u1", None, "")
        await store.store_memory(MemoryFact("food", "pizza", 9), "u1", None, "")
        clock.now += 91 * DAY
        await store.store_memory(MemoryFact("lang", "rust", 1), "u1", None, "")

        assert await store.prune_stale() == 1
        assert sorted(m.value for m in records.list_for_user("u1", None)) == ["pizza", "rust"]

    @pytest.mark.asyncio
    async def test_get_stats(self, store):
        await store.store_memory(MemoryFact("pet", "dog", 4), "u1", None, "")
        await store.store_memory(MemoryFact("food", "pizza", 8, MemoryType.TOPIC), "u2", "g1", "")

        stats = await store.get_stats()

        assert stats.total == 2
        assert stats.unique_users == 2
        assert stats.unique_tenants == 1
        assert stats.by_type == {"user": 1, "topic": 1}
        assert stats.avg_importance == 6.0

    @pytest.mark.asyncio
    async def test_list_memories(self, store):
        await store.store_memory(MemoryFact("pet", "dog", 4), "u1", None, "")
        await store.store_memory(MemoryFact("food", "pizza", 8), "u1", None, "")

        memories = await store.list_memories("u1", None)

        assert [m.value for m in memories] == ["pizza", "dog"]


class TestMatchOperations:
    @pytest.mark.asyncio
    async def test_update_by_match(self, store, backends, embedder):
        _, records = backends
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "")

        result = await store.update_memory_by_match("dogs", "prefers cats", "u1", None)

        assert result.found
        assert result.old_value == "likes dogs"
        assert result.new_value == "prefers cats"
        assert records.list_for_user("u1", None)[0].value == "prefers cats"
        assert embedder.calls[-1] == "pet: prefers cats"
        recalled = await store.recall_memories("cat", "u1", None)
        assert [m.value for m in recalled] == ["prefers cats"]

    @pytest.mark.asyncio
    async def test_update_without_match(self, store):
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "")

        result = await store.update_memory_by_match("pizza", "pepperoni", "u1", None)

        assert not result.found

    @pytest.mark.asyncio
    async def test_delete_by_match(self, store, backends):
        index, records = backends
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "")

        result = await store.delete_memory_by_match("my dog", "u1", None)

        assert result.found
        assert result.old_value == "likes dogs"
        assert records.count("u1", None) == 0
        assert index.count() == 0

    @pytest.mark.asyncio
    async def test_delete_by_match_other_user(self, store):
        await store.store_memory(MemoryFact("pet", "likes dogs"), "u1", None, "")

        assert not (await store.delete_memory_by_match("dogs", "u2", None)).found


class TestExtractFacts:
    @pytest.mark.asyncio
    async def test_without_extractor(self, store):
        assert await store.extract_facts([], "u1", None) == []

    @pytest.mark.asyncio
    async def test_delegates_to_extractor(self, embedder, backends, clock):
        index, records = backends
        extractor = AsyncMock()
        extractor.extract.return_value = [MemoryFact("pet", "dog")]
        store = MemoryStore(embedder, index, records, extractor=extractor, clock=clock)
        turns = [Turn(role="user", parts=[TextPart("I have a dog")])]

        facts = await store.extract_facts(turns, "u1", "g1")

        assert facts == [MemoryFact("pet", "dog")]
        extractor.extract.assert_awaited_once_with(turns)
