"""Memory tools the model can call during a reply."""

from typing import Any

from ..tools.base import Tool, ToolContext, ToolResult
from ..tools.registry import ToolRegistry
from .models import MemoryFact
from .store import MemoryStore

EXPLICIT_FACT_IMPORTANCE = 6


class RememberFactTool(Tool):
    """Tool for saving a fact the user shared."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "remember_fact"

    @property
    def description(self) -> str:
        return (
            "Store a new fact about the user. Use when the user shares something "
            "worth remembering (preferences, facts about themselves, important details)."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "fact": {
                    "type": "string",
                    "description": (
                        "The fact to remember (e.g. 'likes dogs', 'is a software engineer')"
                    ),
                },
                "context": {
                    "type": "string",
                    "description": "Brief context about when or why this was shared",
                },
            },
            "required": ["fact"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        fact = kwargs.get("fact", "").strip()
        if not fact:
            return ToolResult.failure("'fact' cannot be empty")

        stored = await self.store.store_memory(
            MemoryFact(key="user_fact", value=fact, importance=EXPLICIT_FACT_IMPORTANCE),
            context.user_id,
            context.tenant_id,
            kwargs.get("context") or "shared in conversation",
        )
        if not stored:
            return ToolResult.failure("Failed to store the memory. Please try again later.")
        return ToolResult(success=True, output=f'Remembered: "{fact}"')


class UpdateMemoryTool(Tool):
    """Tool for correcting a stored fact."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "update_memory"

    @property
    def description(self) -> str:
        return (
            "Update an existing memory when the user corrects or changes a previously "
            "stored fact (e.g. 'actually I prefer X now')."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "description": {
                    "type": "string",
                    "description": "What was previously remembered",
                },
                "new_value": {
                    "type": "string",
                    "description": "The updated information",
                },
            },
            "required": ["description", "new_value"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        description = kwargs.get("description", "").strip()
        new_value = kwargs.get("new_value", "").strip()
        if not description or not new_value:
            return ToolResult.failure("Both 'description' and 'new_value' are required")

        result = await self.store.update_memory_by_match(
            description, new_value, context.user_id, context.tenant_id
        )
        if not result.found:
            return ToolResult(
                success=True,
                output=f'No matching memory found for "{description}". Nothing was updated.',
            )
        return ToolResult(
            success=True,
            output=f'Updated memory: "{result.old_value}" -> "{result.new_value}"',
        )


class ForgetMemoryTool(Tool):
    """Tool for deleting one stored fact."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "forget_memory"

    @property
    def description(self) -> str:
        return (
            "Delete a specific memory when the user asks to forget something "
            "(e.g. 'forget that I like X')."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "description": {
                    "type": "string",
                    "description": "Description of the memory to find and delete",
                },
            },
            "required": ["description"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        description = kwargs.get("description", "").strip()
        if not description:
            return ToolResult.failure("'description' cannot be empty")

        result = await self.store.delete_memory_by_match(
            description, context.user_id, context.tenant_id
        )
        if not result.found:
            return ToolResult(
                success=True,
                output=f'No matching memory found for "{description}". Nothing was deleted.',
            )
        return ToolResult(success=True, output=f'Forgot: "{result.old_value}"')


class RecallMemoriesTool(Tool):
    """Tool for searching stored memories."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "recall_memories"

    @property
    def description(self) -> str:
        return (
            "Search stored memories about a topic or the user. Use when you need "
            "to check what you remember about something specific."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "What to search for in stored memories",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of memories to return (default: 5)",
                },
            },
            "required": ["query"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        query = kwargs.get("query", "").strip()
        if not query:
            return ToolResult.failure("'query' cannot be empty")
        limit = max(1, min(10, kwargs.get("limit", 5)))

        memories = await self.store.recall_memories(
            query, context.user_id, context.tenant_id, limit
        )
        if not memories:
            return ToolResult(success=True, output=f'No memories found matching "{query}".')

        lines = [
            f"{i}. {m.key}: {m.value} (relevance: {m.score * 100:.0f}%)"
            for i, m in enumerate(memories, 1)
        ]
        return ToolResult(
            success=True,
            output=f"Found {len(memories)} memories:\n" + "\n".join(lines),
            metadata={"count": len(memories)},
        )


def create_memory_tools(store: MemoryStore) -> ToolRegistry:
    """Registry holding every memory tool bound to ``store``."""
    registry = ToolRegistry()
    registry.register(RememberFactTool(store))
    registry.register(UpdateMemoryTool(store))
    registry.register(ForgetMemoryTool(store))
    registry.register(RecallMemoriesTool(store))
    return registry
