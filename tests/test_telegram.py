"""Tests for the Telegram adapter."""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from telegram import MessageEntity, User
from telegram.constants import ChatAction, ChatType

from mina.logging import configure_logger
from mina.responder import ResponseMode
from mina.settings import SettingsStore
from mina.telegram import TelegramBot, TelegramResponder
from mina.telegram.bot import extract_media, is_reply_to, mentions_user, tenant_for

BOT_ID = 42


def make_message(
    text: str = "hello",
    chat_type: str = ChatType.GROUP,
    entities: dict | None = None,
    reply_to=None,
) -> Mock:
    message = Mock()
    message.chat_id = -100
    message.message_id = 5
    message.chat = Mock(type=chat_type, id=-100)
    message.chat.send_message = AsyncMock()
    message.chat.send_action = AsyncMock()
    message.reply_text = AsyncMock()
    message.from_user = User(id=7, first_name="Ana", last_name="B", is_bot=False, username="ana")
    message.text = text
    message.caption = None
    message.photo = []
    message.document = None
    message.reply_to_message = reply_to
    message.parse_entities.return_value = entities or {}
    message.parse_caption_entities.return_value = {}
    return message


@pytest.fixture
def context() -> SimpleNamespace:
    bot = SimpleNamespace(id=BOT_ID, username="mina_bot", get_file=AsyncMock())
    return SimpleNamespace(bot=bot)


@pytest.fixture
def mina() -> Mock:
    mina = Mock()
    mina.orchestrator.should_respond = AsyncMock(return_value=ResponseMode.MENTION)
    mina.orchestrator.handle_message = AsyncMock()
    mina.cache.clear = AsyncMock()
    return mina


@pytest.fixture
def bot(mina: Mock, tmp_path: Path) -> TelegramBot:
    configure_logger(tmp_path / "logs")
    return TelegramBot(token="test-token", mina=mina)


class TestHelpers:
    def test_tenant_for(self):
        assert tenant_for(Mock(type=ChatType.PRIVATE, id=7)) is None
        assert tenant_for(Mock(type=ChatType.SUPERGROUP, id=-100)) == "-100"

    def test_mention_by_username(self):
        entity = MessageEntity(type=MessageEntity.MENTION, offset=0, length=9)
        message = make_message(entities={entity: "@Mina_Bot"})

        assert mentions_user(message, "mina_bot", BOT_ID)
        assert not mentions_user(message, "other_bot", BOT_ID)

    def test_text_mention(self):
        user = User(id=BOT_ID, first_name="Mina", is_bot=True)
        entity = MessageEntity(type=MessageEntity.TEXT_MENTION, offset=0, length=4, user=user)
        message = make_message(entities={entity: "Mina"})

        assert mentions_user(message, None, BOT_ID)

    def test_is_reply_to(self):
        replied = SimpleNamespace(from_user=SimpleNamespace(id=BOT_ID))

        assert is_reply_to(make_message(reply_to=replied), BOT_ID)
        assert not is_reply_to(make_message(), BOT_ID)

    @pytest.mark.asyncio
    async def test_extract_media_uses_largest_photo(self, context):
        context.bot.get_file.return_value = SimpleNamespace(file_path="https://files/photo.jpg")
        message = make_message()
        message.photo = [SimpleNamespace(file_id="small"), SimpleNamespace(file_id="big")]

        items = await extract_media(message, context)

        context.bot.get_file.assert_awaited_once_with("big")
        assert [(i.url, i.mime_type) for i in items] == [("https://files/photo.jpg", "image/jpeg")]

    @pytest.mark.asyncio
    async def test_extract_media_ignores_other_documents(self, context):
        message = make_message()
        message.document = SimpleNamespace(file_id="doc", mime_type="application/pdf")

        assert await extract_media(message, context) == []


class TestResponder:
    @pytest.mark.asyncio
    async def test_delegates_to_message(self):
        message = make_message()
        responder = TelegramResponder(message)

        await responder.reply("hi")
        await responder.send("notice")
        await responder.send_typing()

        message.reply_text.assert_awaited_once_with("hi")
        message.chat.send_message.assert_awaited_once_with("notice")
        message.chat.send_action.assert_awaited_once_with(ChatAction.TYPING)


class TestTelegramBot:
    def test_requires_token(self, monkeypatch, mina):
        monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)

        with pytest.raises(ValueError, match="TELEGRAM_TOKEN"):
            TelegramBot(token=None, mina=mina)

    @pytest.mark.asyncio
    async def test_to_inbound(self, bot, context):
        entity = MessageEntity(type=MessageEntity.MENTION, offset=6, length=9)
        message = make_message("hello @mina_bot", entities={entity: "@mina_bot"})

        inbound = await bot.to_inbound(message, context)

        assert inbound.message_id == "-100:5"
        assert inbound.author_id == "7"
        assert inbound.display_name == "Ana B"
        assert inbound.username == "ana"
        assert inbound.tenant_id == "-100"
        assert inbound.channel_id == "-100"
        assert inbound.mentions_bot is True
        assert inbound.replies_to_bot is False
        assert inbound.is_automated is False

    @pytest.mark.asyncio
    async def test_private_chat_is_dm(self, bot, context):
        inbound = await bot.to_inbound(make_message(chat_type=ChatType.PRIVATE), context)
        assert inbound.is_dm

    @pytest.mark.asyncio
    async def test_handle_message(self, bot, mina, context):
        message = make_message()

        await bot._handle_message(SimpleNamespace(effective_message=message), context)

        inbound, mode = mina.orchestrator.handle_message.call_args.args
        assert mode is ResponseMode.MENTION
        assert inbound.content == "hello"

    @pytest.mark.asyncio
    async def test_handle_message_ignored(self, bot, mina, context):
        mina.orchestrator.should_respond.return_value = ResponseMode.NONE

        await bot._handle_message(SimpleNamespace(effective_message=make_message()), context)

        mina.orchestrator.handle_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset_clears_conversation(self, bot, mina, context):
        message = make_message("/reset")

        await bot._handle_reset(SimpleNamespace(message=message), context)

        mina.cache.clear.assert_awaited_once_with("tenant:-100:channel:-100")
        message.reply_text.assert_awaited_once_with("Conversation cleared.")

    @pytest.mark.asyncio
    async def test_ignoreme_toggles(self, bot, mina, context, tmp_path: Path):
        mina.settings = SettingsStore(tmp_path / "settings.db")
        mina.settings.init_db()
        message = make_message("/ignoreme")
        update = SimpleNamespace(message=message)

        await bot._handle_ignoreme(update, context)
        assert mina.settings.load_user_preferences("7").ignore_me is True

        await bot._handle_ignoreme(update, context)
        assert mina.settings.load_user_preferences("7").ignore_me is False
        mina.settings.close()

    @pytest.mark.asyncio
    async def test_forget_without_memory(self, bot, mina, context):
        mina.memory = None
        message = make_message("/forget")

        await bot._handle_forget(SimpleNamespace(message=message), context)

        message.reply_text.assert_awaited_once_with("Memory is not available right now.")

    @pytest.mark.asyncio
    async def test_forget(self, bot, mina, context):
        mina.memory.forget_user = AsyncMock(return_value=3)
        message = make_message("/forget")

        await bot._handle_forget(SimpleNamespace(message=message), context)

        mina.memory.forget_user.assert_awaited_once_with("7", "-100")
        message.reply_text.assert_awaited_once_with("Forgot 3 memories.")
