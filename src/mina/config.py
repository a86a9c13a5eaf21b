"""Configuration for the Mina core.

Every component takes its own small config dataclass. ``load_config`` builds
the full set from environment variables (``.env`` files are loaded by the
entry point before this runs).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".mina"

DEFAULT_SYSTEM_PROMPT = "You are Mina, a friendly assistant who lives in this chat."


@dataclass
class RouterConfig:
    """Model identifiers per task type."""

    chat_model: str = "llama-3.3-70b-versatile"
    embedding_model: str = "nomic-embed-text-v1_5"
    extraction_model: str = "llama-3.1-8b-instant"
    reasoning_model: str | None = None


@dataclass
class ClientConfig:
    """Timeout, retry and circuit breaker settings for a model endpoint."""

    timeout: float = 20.0
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 8.0
    failure_threshold: int = 5
    cooldown: float = 30.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")


@dataclass
class CacheConfig:
    """Conversation context cache settings."""

    max_messages: int = 20
    ttl_seconds: float = 600  # 10 minutes
    debounce_seconds: float = 2.0
    sweep_interval: float = 300  # 5 minutes

    def __post_init__(self) -> None:
        if self.max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")


@dataclass
class MemoryConfig:
    """Long-term memory settings."""

    max_memories_per_scope: int = 50
    dedup_threshold: float = 0.85
    min_turns_for_extraction: int = 3
    extraction_window: int = 10
    max_facts_per_extraction: int = 3
    prune_after_days: int = 90
    prune_max_importance: int = 3
    prune_max_access_count: int = 2

    def __post_init__(self) -> None:
        if self.max_memories_per_scope < 1:
            raise ValueError("max_memories_per_scope must be at least 1")
        if not 0 <= self.dedup_threshold <= 1:
            raise ValueError("dedup_threshold must be between 0 and 1")


@dataclass
class ResponderConfig:
    """Orchestrator behaviour: toggles, generation controls and limits."""

    globally_enabled: bool = True
    dm_enabled_globally: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int = 1024
    temperature: float = 0.7
    history_limit: int = 9
    memories_per_participant: int = 3
    user_cooldown: float = 3.0
    channel_cooldown: float = 1.0
    failure_threshold: int = 5
    failure_window: float = 600  # 10 minutes
    min_history_for_extraction: int = 5
    max_tool_iterations: int = 5
    participant_window: float = 600
    participant_lookback: int = 15

    def __post_init__(self) -> None:
        self.temperature = max(0.0, min(2.0, self.temperature))
        if not self.system_prompt.strip():
            raise ValueError("system_prompt cannot be empty")


@dataclass
class MinaConfig:
    """Top-level configuration."""

    groq_api_key: str | None = None
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    router: RouterConfig = field(default_factory=RouterConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    responder: ResponderConfig = field(default_factory=ResponderConfig)

    @property
    def database_path(self) -> Path:
        """SQLite file shared by conversations, memories and settings."""
        return self.data_dir / "mina.db"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {value!r}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def load_config() -> MinaConfig:
    """Load configuration from environment variables."""
    data_dir = os.getenv("MINA_DATA_DIR")

    router = RouterConfig(
        chat_model=os.getenv("MINA_CHAT_MODEL", RouterConfig.chat_model),
        embedding_model=os.getenv("MINA_EMBEDDING_MODEL", RouterConfig.embedding_model),
        extraction_model=os.getenv(
            "MINA_EXTRACTION_MODEL", RouterConfig.extraction_model
        ),
        reasoning_model=os.getenv("MINA_REASONING_MODEL") or None,
    )

    client = ClientConfig(
        timeout=_env_float("MINA_TIMEOUT", ClientConfig.timeout),
        max_attempts=_env_int("MINA_MAX_ATTEMPTS", ClientConfig.max_attempts),
    )

    responder = ResponderConfig(
        globally_enabled=_env_bool("MINA_ENABLED", True),
        dm_enabled_globally=_env_bool("MINA_DM_ENABLED", True),
        system_prompt=os.getenv("MINA_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        max_tokens=_env_int("MINA_MAX_TOKENS", ResponderConfig.max_tokens),
        temperature=_env_float("MINA_TEMPERATURE", ResponderConfig.temperature),
    )

    return MinaConfig(
        groq_api_key=os.getenv("GROQ_API_KEY"),
        data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
        router=router,
        client=client,
        responder=responder,
    )
