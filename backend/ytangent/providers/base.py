"""Completion provider interface, request/response types, and provider errors.

Every provider is streaming-first: adapters implement generate_stream() and
inherit generate(), which drains the stream. Replies reach the UI through a
StreamingSession either way.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, Field

from ytangent.models import SamplingParams


class GenerationRequest(BaseModel):
    model: str
    messages: list[dict[str, str]]
    system_prompt: str | None = None
    sampling_params: SamplingParams = Field(default_factory=SamplingParams)


class GenerationResult(BaseModel):
    content: str
    model: str
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    latency_ms: int | None = None


class StreamChunk(BaseModel):
    type: str  # "text_delta" | "message_stop"
    text: str = ""
    is_final: bool = False
    result: GenerationResult | None = None


class LLMProvider(ABC):
    """A named source of streamed completions."""

    suggested_models: list[str] = []

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        """Yield text_delta chunks, then exactly one final message_stop chunk."""
        ...

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        async for chunk in self.generate_stream(request):
            if chunk.is_final and chunk.result is not None:
                return chunk.result
        raise ProviderTransportError(self.name, "stream ended without a final chunk")

    async def close(self) -> None:
        """Release network resources. Most SDK clients need nothing here."""
        return None


class ReplyAccumulator:
    """Collects a streamed reply and its metadata for the final chunk."""

    def __init__(self, model: str) -> None:
        self.model = model
        self.finish_reason: str | None = None
        self.usage: dict[str, int] | None = None
        self._parts: list[str] = []
        self._start = time.monotonic()

    def delta(self, text: str) -> StreamChunk:
        self._parts.append(text)
        return StreamChunk(type="text_delta", text=text)

    def final(self) -> StreamChunk:
        return StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content="".join(self._parts),
                model=self.model,
                finish_reason=self.finish_reason,
                usage=self.usage,
                latency_ms=int((time.monotonic() - self._start) * 1000),
            ),
        )


def with_system_message(request: GenerationRequest) -> list[dict[str, str]]:
    """Chat-completions message list with the system prompt prepended."""
    messages: list[dict[str, str]] = []
    if request.system_prompt is not None:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.extend(
        {"role": m["role"], "content": m["content"]} for m in request.messages
    )
    return messages


def sampling_kwargs(params: SamplingParams, *, stop_key: str) -> dict[str, Any]:
    """SDK keyword arguments for the sampling settings that were actually set."""
    kwargs: dict[str, Any] = {"max_tokens": params.max_tokens}
    if params.temperature is not None:
        kwargs["temperature"] = params.temperature
    if params.top_p is not None:
        kwargs["top_p"] = params.top_p
    if params.stop_sequences:
        kwargs[stop_key] = params.stop_sequences
    return kwargs


# -- Errors --


class ProviderError(Exception):
    """A completion provider failed. `kind` is what the UI switches on."""

    kind = "transport"

    def __init__(self, provider: str, detail: str) -> None:
        self.provider = provider
        self.detail = detail
        super().__init__(f"{provider}: {detail}")


class ProviderRateLimitedError(ProviderError):
    kind = "rate_limited"


class ProviderQuotaExceededError(ProviderError):
    kind = "quota_exceeded"


class ProviderTransportError(ProviderError):
    kind = "transport"
