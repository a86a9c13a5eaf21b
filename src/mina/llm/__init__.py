"""Generative-model access: content types, media, resilience, client."""

from .client import (
    GenerationResult,
    ResilientModelClient,
    build_messages,
    classify_error,
    create_groq_client,
)
from .content import (
    Attribution,
    FunctionCallPart,
    FunctionResultPart,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
)
from .media import MediaFetcher, MediaItem
from .resilience import CircuitBreaker, CircuitState, RetryPolicy

__all__ = [
    "Attribution",
    "CircuitBreaker",
    "CircuitState",
    "FunctionCallPart",
    "FunctionResultPart",
    "GenerationResult",
    "InlineDataPart",
    "MediaFetcher",
    "MediaItem",
    "Part",
    "ResilientModelClient",
    "RetryPolicy",
    "TextPart",
    "Turn",
    "build_messages",
    "classify_error",
    "create_groq_client",
]
