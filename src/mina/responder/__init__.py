"""Decides when Mina answers and produces the answer."""

from .failures import TenantFailureTracker
from .models import (
    InboundMessage,
    MessageResponder,
    PreferenceProvider,
    ResponseMode,
    TenantSettings,
    TenantSettingsProvider,
    UserPreferences,
)
from .orchestrator import (
    FALLBACK_REPLY,
    IGNORE_ME_NOTICE,
    ReplyOutcome,
    ResponseOrchestrator,
    conversation_key_for,
)
from .rate_limit import RateLimiter

__all__ = [
    "FALLBACK_REPLY",
    "IGNORE_ME_NOTICE",
    "InboundMessage",
    "MessageResponder",
    "PreferenceProvider",
    "RateLimiter",
    "ReplyOutcome",
    "ResponseMode",
    "ResponseOrchestrator",
    "TenantFailureTracker",
    "TenantSettings",
    "TenantSettingsProvider",
    "UserPreferences",
    "conversation_key_for",
]
