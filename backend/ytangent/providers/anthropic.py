"""Streaming adapter for Anthropic's Messages API."""

import os
from collections.abc import AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from ytangent.providers.base import (
    GenerationRequest,
    LLMProvider,
    ProviderError,
    ProviderQuotaExceededError,
    ProviderRateLimitedError,
    ProviderTransportError,
    ReplyAccumulator,
    StreamChunk,
    sampling_kwargs,
)


class AnthropicProvider(LLMProvider):
    suggested_models = [
        "claude-sonnet-4-5-20250929",
        "claude-haiku-4-5-20251001",
    ]

    def __init__(self, client: AsyncAnthropic) -> None:
        self._client = client

    @classmethod
    def from_env(cls) -> "AnthropicProvider | None":
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        return cls(AsyncAnthropic(api_key=api_key)) if api_key else None

    @property
    def name(self) -> str:
        return "anthropic"

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        reply = ReplyAccumulator(request.model)
        kwargs = sampling_kwargs(request.sampling_params, stop_key="stop_sequences")
        # Anthropic takes the system prompt as a parameter, not a message.
        if request.system_prompt is not None:
            kwargs["system"] = request.system_prompt

        input_tokens = 0
        try:
            stream = await self._client.messages.create(
                model=request.model,
                messages=[
                    {"role": m["role"], "content": m["content"]} for m in request.messages
                ],
                stream=True,
                **kwargs,
            )
            async for event in stream:
                if event.type == "message_start":
                    reply.model = event.message.model
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_delta":
                    text = getattr(event.delta, "text", None)
                    if text:
                        yield reply.delta(text)
                elif event.type == "message_delta":
                    reply.finish_reason = event.delta.stop_reason
                    reply.usage = {
                        "input_tokens": input_tokens,
                        "output_tokens": event.usage.output_tokens,
                    }
        except anthropic.APIError as e:
            raise self._classify(e) from e
        yield reply.final()

    def _classify(self, e: anthropic.APIError) -> ProviderError:
        if isinstance(e, anthropic.RateLimitError):
            return ProviderRateLimitedError(self.name, e.message)
        if isinstance(e, anthropic.APIStatusError) and e.status_code == 402:
            return ProviderQuotaExceededError(self.name, e.message)
        return ProviderTransportError(self.name, e.message)
