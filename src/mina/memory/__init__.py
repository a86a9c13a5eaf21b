"""Long-term memory: extraction, vector-indexed storage and scoped recall."""

from .extractor import FactExtractor
from .models import (
    MatchResult,
    MemoryFact,
    MemoryPreferences,
    MemoryStats,
    MemoryType,
    RecalledMemory,
    StoredMemory,
)
from .records import MemoryRecords
from .store import MemoryStore, is_memory_in_scope
from .tools import (
    ForgetMemoryTool,
    RecallMemoriesTool,
    RememberFactTool,
    UpdateMemoryTool,
    create_memory_tools,
)
from .vectors import SQLiteVectorIndex, VectorIndex, VectorMatch

__all__ = [
    "FactExtractor",
    "ForgetMemoryTool",
    "MatchResult",
    "MemoryFact",
    "MemoryPreferences",
    "MemoryRecords",
    "MemoryStats",
    "MemoryStore",
    "MemoryType",
    "RecallMemoriesTool",
    "RecalledMemory",
    "RememberFactTool",
    "SQLiteVectorIndex",
    "StoredMemory",
    "UpdateMemoryTool",
    "VectorIndex",
    "VectorMatch",
    "create_memory_tools",
    "is_memory_in_scope",
]
