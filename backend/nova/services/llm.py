"""Anthropic LLM adapter with streaming, retry and tool-use support."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError

from nova.config import Settings, get_settings
from nova.errors import GenerationError

logger = logging.getLogger(__name__)

# Transient error types that warrant retrying
_RETRYABLE_ERRORS = (APIConnectionError, RateLimitError)
_OVERLOADED_STATUS = 529


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, _RETRYABLE_ERRORS):
        return True
    return isinstance(error, APIStatusError) and error.status_code == _OVERLOADED_STATUS


async def _retry_anthropic(coro_factory, *, max_attempts: int = 3, base_delay: float = 1.0):
    """
    Retry an Anthropic API call with exponential backoff.

    Args:
        coro_factory: Callable that returns a new coroutine each invocation.
        max_attempts: Maximum number of attempts.
        base_delay: Base delay in seconds (doubles each retry).

    Returns:
        The result of the coroutine.
    """
    for attempt in range(max_attempts):
        try:
            return await coro_factory()
        except Exception as e:
            if not _is_retryable(e) or attempt == max_attempts - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Anthropic API transient error (attempt %d/%d), retrying in %.1fs: %s",
                attempt + 1, max_attempts, delay, str(e),
            )
            await asyncio.sleep(delay)


@dataclass(frozen=True)
class LlmChunk:
    """
    One item of a model stream.

    Text fragments have ``is_complete=False``. The last item of every stream
    has ``is_complete=True``, no text, and carries usage for all rounds.
    """

    text: str = ""
    is_complete: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None


@dataclass(frozen=True)
class LlmResponse:
    content: str
    input_tokens: int
    output_tokens: int
    model: str


class ToolExecutor(Protocol):
    """Named tools the model may call while generating."""

    def definitions(self) -> list[dict[str, Any]]: ...

    async def invoke(self, name: str, arguments: dict[str, Any]) -> str: ...


class LlmService(Protocol):
    def stream_chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        *,
        tools: ToolExecutor | None = None,
    ) -> AsyncIterator[LlmChunk]: ...

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int | None = None,
    ) -> LlmResponse: ...


class AnthropicLlmService:
    """Claude-backed implementation of ``LlmService``."""

    def __init__(self, settings: Settings | None = None, client: AsyncAnthropic | None = None):
        self.settings = settings or get_settings()
        self.client = client or AsyncAnthropic(api_key=self.settings.anthropic_api_key)

    async def stream_chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        *,
        tools: ToolExecutor | None = None,
    ) -> AsyncIterator[LlmChunk]:
        """
        Stream a response, running tool calls between rounds.

        Text from every round is yielded as soon as it arrives. When the model
        stops to call tools, they are executed and their results fed back for
        another round, up to ``llm_max_tool_rounds``.

        Raises:
            GenerationError: The model call failed (after retries).
        """
        conversation = list(messages)
        input_tokens = 0
        output_tokens = 0
        model = self.settings.llm_model
        max_rounds = self.settings.llm_max_tool_rounds

        for round_number in range(max_rounds + 1):
            offer_tools = tools is not None and round_number < max_rounds
            request: dict[str, Any] = {
                "model": self.settings.llm_model,
                "max_tokens": self.settings.llm_max_tokens,
                "temperature": self.settings.llm_temperature,
                "system": system,
                "messages": conversation,
            }
            if offer_tools:
                request["tools"] = tools.definitions()

            final = None
            async for item in self._stream_round(request):
                if isinstance(item, str):
                    yield LlmChunk(text=item)
                else:
                    final = item

            input_tokens += final.usage.input_tokens
            output_tokens += final.usage.output_tokens
            model = final.model

            if not offer_tools or final.stop_reason != "tool_use":
                break

            tool_results = []
            for block in final.content:
                if block.type != "tool_use":
                    continue
                logger.debug("Model requested tool %s", block.name)
                result = await tools.invoke(block.name, dict(block.input or {}))
                tool_results.append({"type": "tool_result", "tool_use_id": block.id, "content": result})

            conversation.append({"role": "assistant", "content": _content_blocks(final.content)})
            conversation.append({"role": "user", "content": tool_results})

        yield LlmChunk(is_complete=True, input_tokens=input_tokens, output_tokens=output_tokens, model=model)

    async def _stream_round(self, request: dict[str, Any]) -> AsyncIterator[Any]:
        """Yield text fragments, then the final message. Retries only before the first fragment."""
        max_attempts = 3

        for attempt in range(max_attempts):
            emitted = False
            try:
                async with self.client.messages.stream(**request) as stream:
                    async for text in stream.text_stream:
                        emitted = True
                        yield text
                    yield await stream.get_final_message()
                return

            except Exception as e:
                if emitted or not _is_retryable(e) or attempt == max_attempts - 1:
                    logger.exception("LLM streaming failed (attempt %d/%d)", attempt + 1, max_attempts)
                    raise GenerationError("The language model failed to generate a response") from e
                delay = 1.0 * (2 ** attempt)
                logger.warning(
                    "Anthropic stream transient error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, max_attempts, delay, str(e),
                )
                await asyncio.sleep(delay)

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int | None = None,
    ) -> LlmResponse:
        """
        Get a non-streaming response (used for background extraction).

        Raises:
            GenerationError: The model call failed (after retries).
        """
        try:
            message = await _retry_anthropic(
                lambda: self.client.messages.create(
                    model=self.settings.llm_model,
                    max_tokens=max_tokens or self.settings.llm_max_tokens,
                    system=system,
                    messages=messages,
                )
            )
        except Exception as e:
            raise GenerationError("The language model failed to generate a response") from e

        text = "".join(block.text for block in message.content if block.type == "text")
        return LlmResponse(
            content=text,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            model=message.model,
        )


def _content_blocks(blocks) -> list[dict[str, Any]]:
    """Echo an assistant turn back to the API using only the fields it accepts."""
    result = []
    for block in blocks:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
    return result
