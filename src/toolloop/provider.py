import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from openai import APIError, AsyncOpenAI

from toolloop.errors import TransportError
from toolloop.streaming import StreamChunk, ToolCallFragment

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class Completion:
    """A whole (non-streamed) completion.

    ``message`` is ``choices[0].message`` as returned by the client.
    """

    message: Any
    finish_reason: str | None = None
    usage: Any = None
    model: str | None = None


def _normalize_chunk(chunk) -> StreamChunk | None:
    """Convert an OpenAI ``ChatCompletionChunk`` into a :class:`StreamChunk`.

    A chunk without choices is the trailing usage chunk sent when
    ``stream_options.include_usage`` is set; it becomes a chunk carrying
    only ``usage``. Returns ``None`` when it has no usage either.
    """
    if not chunk.choices:
        usage = getattr(chunk, "usage", None)
        if usage is None:
            return None
        return StreamChunk(usage=usage, model=getattr(chunk, "model", None))
    choice = chunk.choices[0]
    delta = choice.delta
    fragments = None
    if delta is not None and getattr(delta, "tool_calls", None):
        fragments = []
        for tc in delta.tool_calls:
            function = getattr(tc, "function", None)
            fragments.append(ToolCallFragment(
                index=tc.index,
                call_id=getattr(tc, "id", None),
                name=getattr(function, "name", None),
                arguments_delta=getattr(function, "arguments", None),
            ))
    return StreamChunk(
        content_delta=getattr(delta, "content", None),
        tool_call_fragments=fragments,
        finish_reason=getattr(choice, "finish_reason", None),
        usage=getattr(chunk, "usage", None),
    )


class ModelProvider:
    """Interface the orchestrator uses to reach a chat-completion endpoint.

    ``messages`` are OpenAI chat message dicts and ``tools`` OpenAI tool
    schemas. Implementations raise :class:`TransportError` for any
    request or stream failure.
    """

    name: str = "custom"

    async def complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> Completion:
        raise NotImplementedError

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError
        yield


class OpenAICompatibleProvider(ModelProvider):
    """Any server speaking the OpenAI chat-completions API.

    Args:
        base_url: Endpoint root, e.g. ``http://localhost:11434/v1``.
        api_key: Key sent as bearer token. Local servers usually ignore
            it, so it defaults to a placeholder.
        max_retries: Retries performed by the ``openai`` client.
        timeout: Per-request timeout in seconds.
        stream_usage: Ask for token usage at the end of streamed
            responses. Turn off for servers that reject
            ``stream_options``.
    """

    name = "openai_compatible"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        max_retries: int = 5,
        timeout: float = 180.0,
        stream_usage: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.stream_usage = stream_usage
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key or "DUMMY",
            max_retries=max_retries,
            timeout=timeout,
        )

    def _request_kwargs(self, model, messages, tools, stream=False) -> dict:
        kwargs = {"model": model, "messages": messages}
        if stream:
            kwargs["stream"] = True
            if self.stream_usage:
                kwargs["stream_options"] = {"include_usage": True}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _transport_error(self, model: str, e: APIError) -> TransportError:
        logger.error(f"{self.name} request for {model} failed: {e}")
        return TransportError(
            f"{self.name} completion request failed: {e}",
            provider=self.name,
            model=model,
        )

    async def complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> Completion:
        try:
            response = await self.client.chat.completions.create(
                **self._request_kwargs(model, messages, tools),
            )
        except APIError as e:
            raise self._transport_error(model, e) from e
        choice = response.choices[0]
        return Completion(
            message=choice.message,
            finish_reason=getattr(choice, "finish_reason", None),
            usage=getattr(response, "usage", None),
            model=getattr(response, "model", None),
        )

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        try:
            stream = await self.client.chat.completions.create(
                **self._request_kwargs(model, messages, tools, stream=True),
            )
            async with stream:
                async for chunk in stream:
                    normalized = _normalize_chunk(chunk)
                    if normalized is not None:
                        yield normalized
        except APIError as e:
            raise self._transport_error(model, e) from e


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI's hosted API. Reads ``OPENAI_API_KEY`` when no key is given."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        max_retries: int = 5,
        timeout: float = 600.0,
        stream_usage: bool = True,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        super().__init__(
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            api_key=api_key,
            max_retries=max_retries,
            timeout=timeout,
            stream_usage=stream_usage,
        )


class OpenRouter(OpenAICompatibleProvider):
    """OpenRouter. Reads ``OPENROUTER_API_KEY`` and
    ``OPENROUTER_API_BASE_URL`` when not given explicitly."""

    name = "openrouter"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int = 5,
        timeout: float = 180.0,
        stream_usage: bool = True,
    ):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise ValueError("OPENROUTER_API_KEY is not set")
        super().__init__(
            base_url=base_url or os.getenv(
                "OPENROUTER_API_BASE_URL", OPENROUTER_BASE_URL,
            ),
            api_key=api_key,
            max_retries=max_retries,
            timeout=timeout,
            stream_usage=stream_usage,
        )
