"""Wires the Mina components together from a MinaConfig."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import MinaConfig
from .conversation import ConversationContextCache, SQLiteConversationStore
from .llm import ResilientModelClient, create_groq_client
from .logging import JSONLLogger
from .memory import (
    FactExtractor,
    MemoryRecords,
    MemoryStore,
    SQLiteVectorIndex,
    create_memory_tools,
)
from .responder import ResponseOrchestrator, TenantSettings
from .routing import ModelRouter, TaskType
from .settings import SettingsStore

logger = logging.getLogger(__name__)


@dataclass
class Mina:
    """Every long-lived component, with a shared lifecycle."""

    config: MinaConfig
    router: ModelRouter
    client: ResilientModelClient | None
    conversations: SQLiteConversationStore
    cache: ConversationContextCache
    records: MemoryRecords
    index: SQLiteVectorIndex
    memory: MemoryStore | None
    settings: SettingsStore
    orchestrator: ResponseOrchestrator

    def start(self) -> None:
        """Start background work. Must run inside the event loop."""
        self.cache.start()
        logger.info(f"Mina started - Routing: {self.router.routing_summary()}")

    async def shutdown(self) -> None:
        """Flush pending writes, finish background tasks and close storage."""
        await self.orchestrator.shutdown()
        await self.cache.shutdown()
        self.conversations.close()
        self.records.close()
        self.index.close()
        self.settings.close()


def create_mina(
    config: MinaConfig,
    event_log: JSONLLogger | None = None,
    tenant_defaults: TenantSettings | None = None,
) -> Mina:
    """Build the components described by ``config``.

    Without a Groq API key the model client, and with it long-term memory,
    is left out and Mina never responds.
    """
    router = ModelRouter(config.router)
    db_path = config.database_path

    conversations = SQLiteConversationStore(db_path, max_messages=config.cache.max_messages)
    conversations.init_db()
    cache = ConversationContextCache(conversations, config.cache)

    records = MemoryRecords(db_path)
    records.init_db()
    index = SQLiteVectorIndex(db_path)
    index.init_db()

    settings = SettingsStore(db_path, tenant_defaults=tenant_defaults)
    settings.init_db()

    client = None
    memory = None
    if config.groq_api_key:
        client = ResilientModelClient(
            create_groq_client(config.groq_api_key),
            model=router.get_model(TaskType.CHAT).model,
            embedding_model=router.get_model(TaskType.EMBEDDING).model,
            config=config.client,
        )
        extractor = FactExtractor(
            client,
            model=router.get_model(TaskType.EXTRACTION).model,
            min_turns=config.memory.min_turns_for_extraction,
            window=config.memory.extraction_window,
            max_facts=config.memory.max_facts_per_extraction,
        )
        memory = MemoryStore(
            client,
            index,
            records,
            config.memory,
            extractor=extractor,
            embedding_model=router.get_model(TaskType.EMBEDDING).model,
        )
    else:
        logger.warning("GROQ_API_KEY not set, replies are disabled")

    orchestrator = ResponseOrchestrator(
        client,
        router,
        cache,
        preferences=settings,
        tenants=settings,
        memory=memory,
        tools=create_memory_tools(memory) if memory else None,
        config=config.responder,
        event_log=event_log,
    )

    return Mina(
        config=config,
        router=router,
        client=client,
        conversations=conversations,
        cache=cache,
        records=records,
        index=index,
        memory=memory,
        settings=settings,
        orchestrator=orchestrator,
    )
