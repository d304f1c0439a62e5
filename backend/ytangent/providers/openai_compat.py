"""Streaming adapter for APIs that speak the OpenAI chat completions protocol.

OpenAIProvider and OpenRouterProvider differ only in how their AsyncOpenAI
client is configured.
"""

from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

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
    with_system_message,
)


class OpenAICompatibleProvider(LLMProvider):
    def __init__(self, client: AsyncOpenAI) -> None:
        self._client = client

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        reply = ReplyAccumulator(request.model)
        try:
            stream = await self._client.chat.completions.create(
                model=request.model,
                messages=with_system_message(request),
                stream=True,
                stream_options={"include_usage": True},
                **sampling_kwargs(request.sampling_params, stop_key="stop"),
            )
            async for chunk in stream:
                reply.model = chunk.model or reply.model
                # The usage-only chunk at the end carries no choices.
                for choice in chunk.choices[:1]:
                    if choice.delta.content:
                        yield reply.delta(choice.delta.content)
                    reply.finish_reason = choice.finish_reason or reply.finish_reason
                if chunk.usage:
                    reply.usage = {
                        "input_tokens": chunk.usage.prompt_tokens,
                        "output_tokens": chunk.usage.completion_tokens,
                    }
        except openai.APIError as e:
            raise self._classify(e) from e
        yield reply.final()

    def _classify(self, e: openai.APIError) -> ProviderError:
        # OpenAI reports an empty balance as a 429 with code insufficient_quota.
        if isinstance(e, openai.RateLimitError):
            if e.code == "insufficient_quota":
                return ProviderQuotaExceededError(self.name, e.message)
            return ProviderRateLimitedError(self.name, e.message)
        if isinstance(e, openai.APIStatusError) and e.status_code == 402:
            return ProviderQuotaExceededError(self.name, e.message)
        return ProviderTransportError(self.name, e.message)
