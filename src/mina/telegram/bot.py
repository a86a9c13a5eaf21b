"""Telegram bot integration for Mina."""

import logging
import os

from telegram import Chat, Message, MessageEntity, Update
from telegram.constants import ChatAction, ChatMemberStatus, ChatType
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..app import Mina, create_mina
from ..config import MinaConfig, load_config
from ..llm.media import MediaItem
from ..logging import get_logger
from ..responder import (
    InboundMessage,
    ResponseMode,
    TenantSettings,
    conversation_key_for,
)

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
*Mina*

Hi! I'm Mina. Talk to me here, or mention me in a group.

*Commands:*
/start - Show this message
/reset - Clear our recent conversation
/memories - Show what I remember about you here
/forget - Forget everything I remember about you here
/ignoreme - Stop (or resume) answering you
/ambient - Group admins: answer every message in this chat
"""

MAX_MESSAGE_LENGTH = 4096

TELEGRAM_TENANT_DEFAULTS = TenantSettings(enabled=True, mention_only=True)


class TelegramResponder:
    """MessageResponder bound to one Telegram message."""

    def __init__(self, message: Message) -> None:
        self._message = message

    async def reply(self, text: str) -> None:
        await self._message.reply_text(text)

    async def send(self, text: str) -> None:
        await self._message.chat.send_message(text)

    async def send_typing(self) -> None:
        await self._message.chat.send_action(ChatAction.TYPING)


def tenant_for(chat: Chat) -> str | None:
    """Groups are tenants. Private chats are DMs."""
    if chat.type == ChatType.PRIVATE:
        return None
    return str(chat.id)


def mentions_user(message: Message, username: str | None, user_id: int) -> bool:
    """Whether the message @mentions the given user."""
    entities = message.parse_entities(
        [MessageEntity.MENTION, MessageEntity.TEXT_MENTION]
    ) or message.parse_caption_entities(
        [MessageEntity.MENTION, MessageEntity.TEXT_MENTION]
    )
    for entity, text in entities.items():
        if entity.type == MessageEntity.TEXT_MENTION and entity.user and entity.user.id == user_id:
            return True
        if username and text.lower() == f"@{username.lower()}":
            return True
    return False


def is_reply_to(message: Message, user_id: int) -> bool:
    replied = message.reply_to_message
    return bool(replied and replied.from_user and replied.from_user.id == user_id)


async def extract_media(message: Message, context: ContextTypes.DEFAULT_TYPE) -> list[MediaItem]:
    """Image attachments as downloadable URLs."""
    items = []
    if message.photo:
        # Largest size is last
        file = await context.bot.get_file(message.photo[-1].file_id)
        if file.file_path:
            items.append(MediaItem(url=file.file_path, mime_type="image/jpeg"))
    document = message.document
    if document and document.mime_type and document.mime_type.startswith("image/"):
        file = await context.bot.get_file(document.file_id)
        if file.file_path:
            items.append(MediaItem(url=file.file_path, mime_type=document.mime_type))
    return items


class TelegramBot:
    """Telegram bot for Mina."""

    def __init__(
        self,
        token: str | None = None,
        config: MinaConfig | None = None,
        mina: Mina | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise ValueError("TELEGRAM_TOKEN not set")

        self.json_logger = get_logger()
        self.mina = mina or create_mina(
            config or load_config(),
            event_log=self.json_logger,
            tenant_defaults=TELEGRAM_TENANT_DEFAULTS,
        )
        self._app: Application | None = None

    async def to_inbound(
        self, message: Message, context: ContextTypes.DEFAULT_TYPE
    ) -> InboundMessage:
        """Map a Telegram message to the platform-neutral form."""
        user = message.from_user
        bot = context.bot
        return InboundMessage(
            message_id=f"{message.chat_id}:{message.message_id}",
            author_id=str(user.id) if user else "",
            username=(user.username or "") if user else "",
            display_name=user.full_name if user else "",
            channel_id=str(message.chat_id),
            tenant_id=tenant_for(message.chat),
            content=message.text or message.caption or "",
            is_automated=bool(user is None or user.is_bot),
            mentions_bot=mentions_user(message, bot.username, bot.id),
            replies_to_bot=is_reply_to(message, bot.id),
            media=await extract_media(message, context),
            responder=TelegramResponder(message),
        )

    async def _handle_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /start command."""
        assert update.message is not None
        self.json_logger.log("telegram_start", channel_id=str(update.message.chat_id))
        await update.message.reply_text(WELCOME_MESSAGE, parse_mode="Markdown")

    async def _handle_reset(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /reset command."""
        assert update.message is not None
        inbound = await self.to_inbound(update.message, context)
        await self.mina.cache.clear(conversation_key_for(inbound))
        await update.message.reply_text("Conversation cleared.")

    async def _handle_forget(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /forget command."""
        assert update.message is not None
        if self.mina.memory is None:
            await update.message.reply_text("Memory is not available right now.")
            return
        inbound = await self.to_inbound(update.message, context)
        count = await self.mina.memory.forget_user(inbound.author_id, inbound.tenant_id)
        await update.message.reply_text(
            f"Forgot {count} {'memory' if count == 1 else 'memories'}."
        )

    async def _handle_memories(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /memories command."""
        assert update.message is not None
        if self.mina.memory is None:
            await update.message.reply_text("Memory is not available right now.")
            return
        inbound = await self.to_inbound(update.message, context)
        memories = await self.mina.memory.list_memories(inbound.author_id, inbound.tenant_id)
        if not memories:
            await update.message.reply_text("I don't remember anything about you here yet.")
            return

        lines = [f"- {m.key}: {m.value} (importance {m.importance})" for m in memories]
        text = "What I remember about you:\n" + "\n".join(lines)
        await update.message.reply_text(text[:MAX_MESSAGE_LENGTH])

    async def _handle_ignoreme(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /ignoreme command."""
        assert update.message is not None
        user = update.message.from_user
        if user is None:
            return
        settings = self.mina.settings
        current = await settings.get_user_preferences(str(user.id))
        prefs = settings.update_user_preferences(str(user.id), ignore_me=not current.ignore_me)
        if prefs.ignore_me:
            await update.message.reply_text("Okay, I'll ignore you from now on.")
        else:
            await update.message.reply_text("Welcome back! I'll answer you again.")

    async def _handle_ambient(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /ambient command."""
        assert update.message is not None
        chat = update.message.chat
        user = update.message.from_user
        tenant_id = tenant_for(chat)
        if tenant_id is None or user is None:
            await update.message.reply_text("This only works in groups.")
            return

        member = await chat.get_member(user.id)
        if member.status not in (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER):
            await update.message.reply_text("Only group admins can change this.")
            return

        settings = self.mina.settings
        current = await settings.get_tenant_settings(tenant_id)
        channel_id = str(chat.id)
        if channel_id in current.ambient_channels:
            channels = [c for c in current.ambient_channels if c != channel_id]
            settings.update_tenant_settings(
                tenant_id, ambient_channels=channels, mention_only=True
            )
            await update.message.reply_text("I'll only answer when mentioned.")
        else:
            settings.update_tenant_settings(
                tenant_id,
                ambient_channels=[*current.ambient_channels, channel_id],
                mention_only=False,
            )
            await update.message.reply_text("I'll join in on every message here.")

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle incoming messages."""
        message = update.effective_message
        if message is None:
            return

        try:
            inbound = await self.to_inbound(message, context)
        except Exception:
            logger.exception("Error reading Telegram message")
            return

        orchestrator = self.mina.orchestrator
        mode = await orchestrator.should_respond(inbound)
        if mode is ResponseMode.NONE:
            return

        self.json_logger.log(
            "telegram_message",
            channel_id=inbound.channel_id,
            user_id=inbound.author_id,
            tenant_id=inbound.tenant_id,
            mode=mode.value,
            message_length=len(inbound.content),
        )
        await orchestrator.handle_message(inbound, mode)

    async def _post_init(self, application: Application) -> None:
        """Called after Application.initialize()."""
        self.mina.start()

    async def _post_shutdown(self, application: Application) -> None:
        """Called after Application.shutdown()."""
        await self.mina.shutdown()

    def build_app(self) -> Application:
        """Build the Telegram application."""
        self._app = (
            Application.builder()
            .token(self.token)
            .concurrent_updates(True)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        self._app.add_handler(CommandHandler("start", self._handle_start))
        self._app.add_handler(CommandHandler("reset", self._handle_reset))
        self._app.add_handler(CommandHandler("forget", self._handle_forget))
        self._app.add_handler(CommandHandler("memories", self._handle_memories))
        self._app.add_handler(CommandHandler("ignoreme", self._handle_ignoreme))
        self._app.add_handler(CommandHandler("ambient", self._handle_ambient))
        self._app.add_handler(
            MessageHandler(
                (filters.TEXT | filters.PHOTO | filters.Document.IMAGE) & ~filters.COMMAND,
                self._handle_message,
            )
        )

        return self._app

    def run(self) -> None:
        """Run the bot (blocking)."""
        app = self.build_app()
        logger.info("Starting Telegram bot...")
        app.run_polling()
