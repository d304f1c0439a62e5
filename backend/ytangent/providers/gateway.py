"""Chat gateway provider: raw HTTP and SSE against a hosted chat endpoint.

The gateway accepts {model, messages, stream} with the system prompt as the
first message and answers with an OpenAI-style event stream. No SDK sits in
between, so frames are decoded with SSEDecoder.
"""

import logging
import os
from collections.abc import AsyncIterator

import httpx

from ytangent.generation.sse import SSEDecoder
from ytangent.providers.base import (
    GenerationRequest,
    LLMProvider,
    ProviderError,
    ProviderQuotaExceededError,
    ProviderRateLimitedError,
    ProviderTransportError,
    ReplyAccumulator,
    StreamChunk,
    with_system_message,
)

logger = logging.getLogger(__name__)


class GatewayProvider(LLMProvider):
    suggested_models = ["gpt-4o-mini"]

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    @classmethod
    def from_env(cls) -> "GatewayProvider | None":
        url = os.environ.get("YTANGENT_CHAT_URL")
        return cls(url, api_key=os.environ.get("YTANGENT_CHAT_KEY")) if url else None

    @property
    def name(self) -> str:
        return "gateway"

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        reply = ReplyAccumulator(request.model)
        decoder = SSEDecoder()
        body = {
            "model": request.model,
            "messages": with_system_message(request),
            "stream": True,
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with self._client.stream(
                "POST", self._url, json=body, headers=headers
            ) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode(errors="replace")
                    raise self._status_error(response.status_code, detail)
                async for text in response.aiter_text():
                    for delta in decoder.feed(text):
                        yield reply.delta(delta)
                    if decoder.done:
                        break
            for delta in decoder.flush():
                yield reply.delta(delta)
        except httpx.HTTPError as e:
            raise ProviderTransportError(self.name, str(e)) from e

        if not decoder.done:
            raise ProviderTransportError(self.name, "stream closed before [DONE]")
        reply.finish_reason = "stop"
        yield reply.final()

    def _status_error(self, status_code: int, detail: str) -> ProviderError:
        logger.warning("Gateway returned %d: %.200s", status_code, detail)
        if status_code == 429:
            return ProviderRateLimitedError(
                self.name, "Rate limits exceeded, please try again later."
            )
        if status_code == 402:
            return ProviderQuotaExceededError(
                self.name, "Payment required, please add funds to continue."
            )
        return ProviderTransportError(self.name, f"HTTP {status_code}")

    async def close(self) -> None:
        await self._client.aclose()
