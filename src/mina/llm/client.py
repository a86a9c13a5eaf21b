"""Resilient wrapper around the Groq chat and embedding endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from groq import APIConnectionError, AsyncGroq

from ..config import ClientConfig
from ..errors import (
    CircuitOpenError,
    InvalidRequestError,
    ModelClientError,
    ModelTimeoutError,
    TransientUpstreamError,
)
from .content import (
    FunctionCallPart,
    FunctionResultPart,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
)
from .media import MediaFetcher, MediaItem
from .resilience import CircuitBreaker, CircuitState, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GenerationResult:
    """Result of a generate call."""

    text: str
    tokens_used: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    function_calls: list[FunctionCallPart] | None = None
    model_content: list[Part] = field(default_factory=list)


def create_groq_client(
    api_key: str | None = None, http_client: httpx.AsyncClient | None = None
) -> AsyncGroq:
    """AsyncGroq with SDK retries disabled.

    Retries and circuit breaking belong to ResilientModelClient.
    """
    return AsyncGroq(
        api_key=api_key or os.getenv("GROQ_API_KEY"),
        max_retries=0,
        http_client=http_client,
    )


def classify_error(error: Exception) -> ModelClientError:
    """Map a provider or transport exception to the Mina taxonomy."""
    if isinstance(error, ModelClientError):
        return error

    if isinstance(error, (APIConnectionError, httpx.TransportError, ConnectionError)):
        return TransientUpstreamError(f"Transport error: {error}")

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)

    if isinstance(status, int):
        if status == 429 or status >= 500:
            return TransientUpstreamError(f"Upstream error {status}: {error}", status)
        if 400 <= status < 500:
            return InvalidRequestError(f"Invalid request {status}: {error}", status)

    return ModelClientError(f"Unexpected model API error: {error}")


def _user_content(parts: list[Part]) -> str | list[dict[str, Any]] | None:
    """Build the ``content`` of a user message from text and inline parts."""
    texts = [p.text for p in parts if isinstance(p, TextPart) and p.text.strip()]
    images = [p for p in parts if isinstance(p, InlineDataPart)]

    if not images:
        return "\n".join(texts) or None

    content: list[dict[str, Any]] = [{"type": "text", "text": t} for t in texts]
    for image in images:
        content.append({
            "type": "image_url",
            "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
        })
    return content


def build_messages(
    system_prompt: str,
    history: list[Turn],
    user_parts: list[Part],
) -> list[dict[str, Any]]:
    """Convert turns into chat-completion messages.

    Function results only become ``tool`` messages when the matching call is
    present earlier in the list; otherwise they are sent as plain text, since
    the ring buffer may have dropped the call.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt})

    open_calls: set[str] = set()

    for turn in history:
        if turn.role == "assistant":
            calls = [p for p in turn.parts if isinstance(p, FunctionCallPart) and p.call_id]
            text = turn.text
            if not text and not calls:
                continue
            message: dict[str, Any] = {"role": "assistant", "content": text or None}
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args)},
                    }
                    for call in calls
                ]
                open_calls.update(call.call_id for call in calls if call.call_id)
            messages.append(message)
            continue

        orphan_results: list[Part] = []
        for part in turn.parts:
            if isinstance(part, FunctionResultPart):
                if part.call_id and part.call_id in open_calls:
                    messages.append({
                        "role": "tool",
                        "tool_call_id": part.call_id,
                        "content": part.response,
                    })
                    open_calls.discard(part.call_id)
                else:
                    orphan_results.append(TextPart(f"[{part.name}] {part.response}"))

        content = _user_content(list(turn.parts) + orphan_results)
        if content:
            messages.append({"role": "user", "content": content})

    content = _user_content(user_parts)
    if content:
        messages.append({"role": "user", "content": content})

    return messages


def _parse_tool_calls(tool_calls: Any) -> list[FunctionCallPart]:
    calls = []
    for tc in tool_calls or []:
        name = getattr(tc.function, "name", None)
        if not name:
            logger.warning(f"Function call received without name, using 'unknown': {tc!r}")
            name = "unknown"
        try:
            args = json.loads(tc.function.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            args = {}
        calls.append(
            FunctionCallPart(
                name=name,
                args=args if isinstance(args, dict) else {},
                call_id=getattr(tc, "id", None),
            )
        )
    return calls


class ResilientModelClient:
    """Groq client with timeout, retry and a circuit breaker per endpoint.

    Example:
        client = ResilientModelClient(create_groq_client("..."), model="llama-3.3-70b-versatile")
        result = await client.generate("You are helpful.", [], "Hi!", 256, 0.7)
    """

    def __init__(
        self,
        groq_client: AsyncGroq | None = None,
        model: str = "llama-3.3-70b-versatile",
        embedding_model: str = "nomic-embed-text-v1_5",
        config: ClientConfig | None = None,
        media_fetcher: MediaFetcher | None = None,
        retry: RetryPolicy | None = None,
        chat_breaker: CircuitBreaker | None = None,
        embedding_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._client = groq_client or create_groq_client()
        self.model = model
        self.embedding_model = embedding_model
        self._media = media_fetcher or MediaFetcher(timeout=self.config.timeout)
        self._retry = retry or RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.base_delay,
            max_delay=self.config.max_delay,
        )
        self.chat_breaker = chat_breaker or CircuitBreaker(
            "chat",
            failure_threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown,
        )
        self.embedding_breaker = embedding_breaker or CircuitBreaker(
            "embedding",
            failure_threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown,
        )

    async def _attempt(self, factory: Callable[[], Awaitable[T]]) -> T:
        """One network attempt, raced against the timeout."""
        try:
            return await asyncio.wait_for(factory(), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise ModelTimeoutError(self.config.timeout) from e
        except ModelClientError:
            raise
        except Exception as e:
            raise classify_error(e) from e

    async def _with_retries(
        self, breaker: CircuitBreaker, factory: Callable[[], Awaitable[T]]
    ) -> T:
        # A half-open trial is a single request
        if breaker.state is CircuitState.HALF_OPEN:
            return await self._attempt(factory)
        return await self._retry.run(lambda: self._attempt(factory))

    def _log_failure(self, error: ModelClientError, latency_ms: float) -> None:
        if isinstance(error, CircuitOpenError):
            logger.debug(str(error))
        elif isinstance(error, ModelTimeoutError):
            logger.warning(f"Model API timeout after {latency_ms:.0f}ms")
        elif isinstance(error, TransientUpstreamError):
            logger.warning(f"Model API unavailable after retries: {error}")
        elif isinstance(error, InvalidRequestError):
            logger.warning(f"Model API invalid request: {error}")
        else:
            logger.error(f"Unhandled model API error: {error}")

    async def generate(
        self,
        system_prompt: str,
        history: list[Turn],
        user_input: str,
        max_tokens: int,
        temperature: float,
        media: list[MediaItem] | None = None,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """Generate a reply.

        Args:
            system_prompt: System instruction.
            history: Prior turns, oldest first.
            user_input: The new user message. Omitted when empty and no media.
            max_tokens: Output token limit.
            temperature: Sampling temperature.
            media: Optional attachments to inline into the user turn.
            tools: Optional function declarations (chat-completion tool schema).
            model: Override the default chat model.

        Returns:
            GenerationResult with text, usage, and requested function calls.

        Raises:
            CircuitOpenError: The endpoint's circuit is open.
            ModelTimeoutError: The final attempt timed out.
            TransientUpstreamError: Retries were exhausted.
            InvalidRequestError: The request was rejected.
        """
        start = time.monotonic()
        selected_model = model or self.model

        async def call() -> Any:
            user_parts: list[Part] = []
            if user_input.strip():
                user_parts.append(TextPart(user_input))
            if media:
                user_parts.extend(await self._media.fetch_all(media))

            request: dict[str, Any] = {
                "model": selected_model,
                "messages": build_messages(system_prompt, history, user_parts),
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
            if tools:
                request["tools"] = tools
                request["tool_choice"] = "auto"

            return await self._with_retries(
                self.chat_breaker, lambda: self._client.chat.completions.create(**request)
            )

        try:
            response = await self.chat_breaker.call(call)
        except ModelClientError as e:
            self._log_failure(e, (time.monotonic() - start) * 1000)
            raise

        if not response.choices:
            raise ModelClientError("No choices in response")
        message = response.choices[0].message
        text = message.content or ""
        function_calls = _parse_tool_calls(message.tool_calls)

        model_content: list[Part] = []
        if text:
            model_content.append(TextPart(text))
        model_content.extend(function_calls)

        usage = response.usage
        return GenerationResult(
            text=text,
            tokens_used=getattr(usage, "total_tokens", 0) or 0,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            latency_ms=(time.monotonic() - start) * 1000,
            function_calls=function_calls or None,
            model_content=model_content,
        )

    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        max_tokens: int = 512,
        temperature: float = 0.1,
    ) -> str:
        """Single-shot completion, returning only the text."""
        result = await self.generate(system, [], prompt, max_tokens, temperature, model=model)
        return result.text

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embed a text into a vector.

        Raises:
            ModelClientError: On failure, or when no vector is returned.
        """
        selected_model = model or self.embedding_model

        try:
            response = await self.embedding_breaker.call(
                lambda: self._with_retries(
                    self.embedding_breaker,
                    lambda: self._client.embeddings.create(model=selected_model, input=text),
                )
            )
        except ModelClientError as e:
            self._log_failure(e, 0.0)
            raise

        data = getattr(response, "data", None)
        if not data:
            raise ModelClientError("Embedding response contained no vectors")
        return [float(x) for x in data[0].embedding]

    def breaker_status(self) -> list[dict[str, object]]:
        """State of every endpoint's circuit breaker."""
        return [self.chat_breaker.status(), self.embedding_breaker.status()]
