"""Platform-neutral message and settings types for the responder."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ..llm.content import Attribution
from ..llm.media import MediaItem
from ..memory.models import MemoryPreferences


class ResponseMode(str, Enum):
    """Why Mina is answering a message, if at all."""

    DM = "dm"
    MENTION = "mention"
    AMBIENT = "ambient"
    NONE = "none"


class MessageResponder(Protocol):
    """Sends output back to where a message came from."""

    async def reply(self, text: str) -> None:
        """Reply to the inbound message."""
        ...

    async def send(self, text: str) -> None:
        """Send a standalone message to the same chat."""
        ...

    async def send_typing(self) -> None:
        """Show a typing indicator."""
        ...


@dataclass
class InboundMessage:
    """A message received from the platform.

    ``tenant_id`` is None for direct messages.
    """

    message_id: str
    author_id: str
    channel_id: str
    content: str
    responder: MessageResponder
    username: str = ""
    display_name: str = ""
    tenant_id: str | None = None
    is_automated: bool = False
    mentions_bot: bool = False
    replies_to_bot: bool = False
    media: list[MediaItem] = field(default_factory=list)

    @property
    def is_dm(self) -> bool:
        return self.tenant_id is None

    @property
    def attribution(self) -> Attribution:
        return Attribution(
            user_id=self.author_id,
            username=self.username,
            display_name=self.display_name or self.username,
        )


@dataclass
class UserPreferences:
    """Per-user switches."""

    ignore_me: bool = False
    allow_dms: bool = True
    combine_dm_with_server: bool = False
    global_server_memories: bool = True

    @property
    def memory(self) -> MemoryPreferences:
        return MemoryPreferences(
            combine_dm_with_server=self.combine_dm_with_server,
            global_server_memories=self.global_server_memories,
        )


@dataclass
class TenantSettings:
    """Per-tenant responder settings.

    In mention-only mode Mina answers only when addressed. Otherwise she
    answers every message in the ambient channels.
    """

    enabled: bool = False
    mention_only: bool = True
    ambient_channels: list[str] = field(default_factory=list)


class PreferenceProvider(Protocol):
    async def get_user_preferences(self, user_id: str) -> UserPreferences:
        ...


class TenantSettingsProvider(Protocol):
    async def get_tenant_settings(self, tenant_id: str) -> TenantSettings:
        ...
