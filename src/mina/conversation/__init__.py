"""Conversation history: in-process cache and durable store."""

from .cache import (
    ConversationContextCache,
    ConversationEntry,
    channel_conversation_key,
    dm_conversation_key,
)
from .store import ConversationRecord, ConversationStore, SQLiteConversationStore

__all__ = [
    "ConversationContextCache",
    "ConversationEntry",
    "ConversationRecord",
    "ConversationStore",
    "SQLiteConversationStore",
    "channel_conversation_key",
    "dm_conversation_key",
]
