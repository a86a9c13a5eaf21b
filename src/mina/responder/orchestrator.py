"""Per-message orchestration: decide, recall, generate, reply, remember."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable

from ..config import ResponderConfig
from ..conversation.cache import (
    ConversationContextCache,
    channel_conversation_key,
    dm_conversation_key,
)
from ..errors import CircuitOpenError
from ..llm.client import GenerationResult, ResilientModelClient
from ..llm.content import FunctionCallPart, FunctionResultPart, Part, TextPart, Turn
from ..logging import JSONLLogger
from ..memory.models import RecalledMemory
from ..memory.store import MemoryStore
from ..routing import ModelRouter, TaskType
from ..tools.base import ToolContext
from ..tools.registry import ToolRegistry
from .failures import TenantFailureTracker
from .models import (
    InboundMessage,
    PreferenceProvider,
    ResponseMode,
    TenantSettingsProvider,
)
from .prompt import (
    active_participants,
    build_system_prompt,
    conversation_snippet,
    drop_leading_assistant_turns,
    participant_names,
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm having trouble thinking right now. Please try again in a moment."

IGNORE_ME_NOTICE = (
    "I've been set to ignore you. Send /ignoreme again if you want me to talk to you."
)

MEDIA_ONLY_PROMPT = "What do you see in this image?"

MAX_REPLY_LENGTH = 4096


class ReplyOutcome(Enum):
    """What handle_message ended up doing."""

    REPLIED = "replied"
    EMPTY = "empty"
    RATE_LIMITED = "rate_limited"
    SKIPPED = "skipped"
    FAILED = "failed"


def conversation_key_for(message: InboundMessage) -> str:
    if message.tenant_id is None:
        return dm_conversation_key(message.author_id)
    return channel_conversation_key(message.tenant_id, message.channel_id)


def truncate_reply(text: str, limit: int = MAX_REPLY_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class ResponseOrchestrator:
    """Entry point for every inbound message.

    Example:
        mode = await orchestrator.should_respond(message)
        if mode is not ResponseMode.NONE:
            await orchestrator.handle_message(message, mode)
    """

    def __init__(
        self,
        client: ResilientModelClient | None,
        router: ModelRouter,
        cache: ConversationContextCache,
        preferences: PreferenceProvider,
        tenants: TenantSettingsProvider,
        memory: MemoryStore | None = None,
        tools: ToolRegistry | None = None,
        config: ResponderConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        failures: TenantFailureTracker | None = None,
        event_log: JSONLLogger | None = None,
        max_reply_length: int = MAX_REPLY_LENGTH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.router = router
        self.cache = cache
        self.preferences = preferences
        self.tenants = tenants
        self.memory = memory
        self.tools = tools
        self.config = config or ResponderConfig()
        self.rate_limiter = rate_limiter or RateLimiter(
            user_cooldown=self.config.user_cooldown,
            channel_cooldown=self.config.channel_cooldown,
        )
        self.failures = failures or TenantFailureTracker(
            threshold=self.config.failure_threshold,
            window=self.config.failure_window,
        )
        self.event_log = event_log
        self.max_reply_length = max_reply_length
        self._clock = clock
        self._notified: OrderedDict[str, None] = OrderedDict()
        self._background: set[asyncio.Task[None]] = set()

    async def should_respond(self, message: InboundMessage) -> ResponseMode:
        """Decide whether and how to answer a message. Never raises."""
        try:
            if message.is_automated:
                return ResponseMode.NONE

            prefs = await self.preferences.get_user_preferences(message.author_id)
            if prefs.ignore_me:
                if message.is_dm or message.mentions_bot:
                    await self._send_ignore_notice(message)
                return ResponseMode.NONE

            if not self.config.globally_enabled or self.client is None:
                return ResponseMode.NONE

            if message.tenant_id is None:
                if not self.config.dm_enabled_globally or not prefs.allow_dms:
                    return ResponseMode.NONE
                return ResponseMode.DM

            settings = await self.tenants.get_tenant_settings(message.tenant_id)
            if not settings.enabled:
                return ResponseMode.NONE

            if self.failures.is_disabled(message.tenant_id):
                logger.debug(f"Tenant {message.tenant_id} is auto-disabled, ignoring message")
                if self.event_log:
                    self.event_log.log_tenant_disabled(
                        tenant_id=message.tenant_id, user_id=message.author_id
                    )
                return ResponseMode.NONE

            is_ambient_channel = message.channel_id in settings.ambient_channels
            addressed = message.mentions_bot or message.replies_to_bot

            if is_ambient_channel and not settings.mention_only:
                return ResponseMode.AMBIENT
            if settings.mention_only and addressed and not is_ambient_channel:
                return ResponseMode.MENTION
            return ResponseMode.NONE
        except Exception as e:
            logger.error(f"Error in should_respond: {e}")
            return ResponseMode.NONE

    async def _send_ignore_notice(self, message: InboundMessage) -> None:
        """Tell an ignored user why Mina is silent, once per message."""
        if message.message_id in self._notified:
            return
        self._notified[message.message_id] = None
        while len(self._notified) > 1000:
            self._notified.popitem(last=False)

        try:
            await message.responder.send(IGNORE_ME_NOTICE)
        except Exception as e:
            logger.debug(f"Could not send ignore notice: {e}")

    async def handle_message(self, message: InboundMessage, mode: ResponseMode) -> ReplyOutcome:
        """Generate and send a reply.

        Failures are answered with a fixed apology and count against the
        tenant. Nothing is raised to the caller.
        """
        if mode is ResponseMode.NONE or self.client is None:
            return ReplyOutcome.SKIPPED

        if self.rate_limiter.is_limited(
            message.channel_id, message.author_id, ambient=mode is ResponseMode.AMBIENT
        ):
            logger.debug(
                f"Message rate limited - User: {message.author_id}, "
                f"Channel: {message.channel_id}"
            )
            if self.event_log:
                self.event_log.log_rate_limited(
                    user_id=message.author_id,
                    channel_id=message.channel_id,
                    tenant_id=message.tenant_id,
                    mode=mode.value,
                )
            return ReplyOutcome.RATE_LIMITED

        key = conversation_key_for(message)
        try:
            return await self._reply(message, key)
        except Exception as e:
            logger.warning(
                f"AI response failed - Error: {e}, Tenant: {message.tenant_id}, "
                f"Channel: {message.channel_id}"
            )
            recent = None
            if message.tenant_id is not None:
                recent = self.failures.record_failure(message.tenant_id)
            if self.event_log:
                if isinstance(e, CircuitOpenError):
                    self.event_log.log_circuit_open(endpoint=e.endpoint, retry_in=e.retry_in)
                self.event_log.log_failure(
                    str(e),
                    conversation_key=key,
                    user_id=message.author_id,
                    tenant_id=message.tenant_id,
                    recent_failures=recent,
                )
            try:
                await message.responder.reply(FALLBACK_REPLY)
            except Exception as send_error:
                logger.debug(f"Could not send fallback reply: {send_error}")
            return ReplyOutcome.FAILED

    async def _reply(self, message: InboundMessage, key: str) -> ReplyOutcome:
        assert self.client is not None
        await message.responder.send_typing()

        history = await self.cache.get_history(key, self.config.history_limit)
        history = drop_leading_assistant_turns(history)
        self.cache.append(key, "user", message.content, message.attribution)

        participants = active_participants(
            history,
            message.author_id,
            self._clock(),
            window=self.config.participant_window,
            lookback=self.config.participant_lookback,
        )
        names = participant_names(history)
        names.setdefault(message.author_id, message.attribution.display_name or message.author_id)
        memories = await self._recall(message, participants)
        system_prompt = build_system_prompt(
            self.config.system_prompt, participants, memories, names
        )

        user_input = message.content
        if not user_input.strip() and message.media:
            user_input = MEDIA_ONLY_PROMPT

        formatted = [ConversationContextCache.format_with_attribution(t) for t in history]
        tools = self.tools.get_tools_schema() if self.tools else None
        model = self.router.get_model(TaskType.CHAT).model

        started = time.monotonic()
        result = await self.client.generate(
            system_prompt,
            formatted,
            user_input,
            self.config.max_tokens,
            self.config.temperature,
            media=message.media or None,
            tools=tools or None,
            model=model,
        )
        result, tool_calls = await self._run_tools(
            message, system_prompt, formatted, user_input, result, tools, model
        )

        text = result.text.strip()
        if text:
            await message.responder.reply(truncate_reply(text, self.max_reply_length))
            self.cache.append(key, "assistant", self._reply_parts(result))
        else:
            logger.warning(f"Model returned no text for message {message.message_id}")

        self._schedule_extraction(message, key)
        if message.tenant_id is not None:
            self.failures.clear(message.tenant_id)

        if self.event_log:
            self.event_log.log_response(
                conversation_key=key,
                user_id=message.author_id,
                tenant_id=message.tenant_id,
                model=model,
                latency_ms=(time.monotonic() - started) * 1000,
                tokens_used=result.tokens_used,
                tool_calls=tool_calls,
            )
        return ReplyOutcome.REPLIED if text else ReplyOutcome.EMPTY

    @staticmethod
    def _reply_parts(result: GenerationResult) -> list[Part]:
        """Model content minus dangling function calls."""
        parts = [p for p in result.model_content if not isinstance(p, FunctionCallPart)]
        return parts or [TextPart(result.text)]

    async def _recall(
        self, message: InboundMessage, participants: list[str]
    ) -> dict[str, list[RecalledMemory]]:
        """Recall memories for each participant under their own preferences."""
        memory = self.memory
        if memory is None or not message.content.strip():
            return {}

        async def recall_one(user_id: str) -> tuple[str, list[RecalledMemory]]:
            try:
                prefs = await self.preferences.get_user_preferences(user_id)
                recalled = await memory.recall_memories(
                    message.content,
                    user_id,
                    message.tenant_id,
                    self.config.memories_per_participant,
                    prefs.memory,
                )
            except Exception as e:
                logger.debug(f"Failed to recall memories for user {user_id}: {e}")
                recalled = []
            return user_id, recalled

        results = await asyncio.gather(*(recall_one(u) for u in participants))
        return {user_id: recalled for user_id, recalled in results if recalled}

    async def _run_tools(
        self,
        message: InboundMessage,
        system_prompt: str,
        history: list[Turn],
        user_input: str,
        result: GenerationResult,
        tools: list[dict] | None,
        model: str,
    ) -> tuple[GenerationResult, int]:
        """Execute requested function calls and feed results back.

        Returns:
            The final generation and the number of tool calls executed.
        """
        if self.tools is None or self.client is None:
            return result, 0

        context = ToolContext(user_id=message.author_id, tenant_id=message.tenant_id)
        working = list(history)
        if user_input.strip():
            working.append(
                Turn(role="user", parts=[TextPart(user_input)], attribution=message.attribution)
            )

        iterations = 0
        executed = 0
        while result.function_calls and iterations < self.config.max_tool_iterations:
            iterations += 1
            responses: list[Part] = []
            for call in result.function_calls:
                tool_result = await self.tools.dispatch(call.name, call.args, context)
                executed += 1
                logger.debug(
                    f"Tool {call.name} executed for user {message.author_id} "
                    f"(success: {tool_result.success})"
                )
                responses.append(
                    FunctionResultPart(
                        name=call.name,
                        response=tool_result.to_response(),
                        call_id=call.call_id,
                    )
                )

            working.append(Turn(role="assistant", parts=list(result.model_content)))
            working.append(Turn(role="user", parts=responses))

            await message.responder.send_typing()
            result = await self.client.generate(
                system_prompt,
                working,
                "",
                self.config.max_tokens,
                self.config.temperature,
                tools=tools,
                model=model,
            )

        if result.function_calls:
            logger.warning(
                f"Tool loop hit max iterations ({self.config.max_tool_iterations}) "
                f"for message {message.message_id}"
            )
        return result, executed

    def _schedule_extraction(self, message: InboundMessage, key: str) -> None:
        if self.memory is None:
            return
        task = asyncio.create_task(self._extract_and_store(message, key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _extract_and_store(self, message: InboundMessage, key: str) -> None:
        """Extract facts from the conversation and store them for the author."""
        memory = self.memory
        if memory is None:
            return
        try:
            history = await self.cache.get_history(key, self.cache.config.max_messages)
            if len(history) < self.config.min_history_for_extraction:
                return

            facts = await memory.extract_facts(history, message.author_id, message.tenant_id)
            snippet = conversation_snippet(history)
            for fact in facts:
                await memory.store_memory(fact, message.author_id, message.tenant_id, snippet)
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def shutdown(self) -> None:
        """Wait for background memory extraction to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
