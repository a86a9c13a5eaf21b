"""Data models for the long-term memory system."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MemoryType(str, Enum):
    """What a memory is about."""

    USER = "user"
    GUILD = "guild"
    TOPIC = "topic"

    @classmethod
    def parse(cls, value: Any) -> "MemoryType":
        """Parse a type name, defaulting to USER for anything unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.USER


def clamp_importance(value: Any) -> int:
    """Coerce to an int between 1 and 10. Non-numeric or non-finite values become 5."""
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 5
    return max(1, min(10, number))


@dataclass(frozen=True)
class MemoryFact:
    """A candidate memory, before storage.

    Attributes:
        key: Short name of the fact (e.g. 'favorite_language').
        value: The fact itself.
        importance: 1 (trivial) to 10 (essential). Clamped on creation.
        memory_type: What the fact is about.
    """

    key: str
    value: str
    importance: int = 5
    memory_type: MemoryType = MemoryType.USER

    def __post_init__(self) -> None:
        object.__setattr__(self, "importance", clamp_importance(self.importance))
        object.__setattr__(self, "memory_type", MemoryType.parse(self.memory_type))

    @property
    def embedding_text(self) -> str:
        return f"{self.key}: {self.value}"


@dataclass
class StoredMemory:
    """A memory row as persisted in the metadata store.

    ``tenant_id`` is None for memories formed in direct messages.
    Timestamps are epoch seconds.
    """

    id: int | None
    user_id: str
    tenant_id: str | None
    key: str
    value: str
    importance: int
    memory_type: MemoryType
    context: str
    vector_id: str
    created_at: float
    last_accessed_at: float
    access_count: int = 0


@dataclass
class RecalledMemory:
    """A memory returned by a recall, with its similarity score."""

    id: int
    key: str
    value: str
    score: float
    context: str


@dataclass
class MemoryPreferences:
    """Per-user recall scoping switches."""

    combine_dm_with_server: bool = False
    global_server_memories: bool = True


@dataclass
class MemoryStats:
    """Aggregate statistics across all memories."""

    total: int = 0
    unique_users: int = 0
    unique_tenants: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    top_users: list[tuple[str, int]] = field(default_factory=list)
    avg_importance: float = 0.0
    total_access_count: int = 0


@dataclass
class MatchResult:
    """Outcome of an update or delete by semantic match."""

    found: bool
    old_value: str | None = None
    new_value: str | None = None
