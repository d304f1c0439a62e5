"""Streaming session: one request/response exchange with a provider.

Deltas go to a caller-supplied async sink as they arrive; the caller owns
accumulation for display. The completion sink fires exactly once with the
text accumulated so far, whether the stream finished, failed, or was
abandoned, so partial answers are never lost.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Literal

from pydantic import BaseModel

from ytangent.providers.base import GenerationRequest, LLMProvider

logger = logging.getLogger(__name__)

DeltaSink = Callable[[str], Awaitable[None]]
CompletionSink = Callable[[str], Awaitable[None]]


class StreamTarget(BaseModel):
    kind: Literal["node", "tangent"]
    target_id: str


class StreamOutcome(BaseModel):
    target: StreamTarget
    text: str
    finish_reason: str | None = None
    cancelled: bool = False


class StreamingSession:
    def __init__(
        self,
        provider: LLMProvider,
        request: GenerationRequest,
        target: StreamTarget,
        on_delta: DeltaSink,
        on_complete: CompletionSink,
    ) -> None:
        self._provider = provider
        self._request = request
        self.target = target
        self._on_delta = on_delta
        self._on_complete = on_complete
        self._parts: list[str] = []
        self._started = False
        self._completed = False
        self._cancelled = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop delivering deltas. run() returns at the next chunk boundary."""
        self._cancelled = True

    async def run(self) -> StreamOutcome:
        """Drive the stream to completion.

        Provider errors and task cancellation are re-raised after the
        completion sink has received the partial text.
        """
        if self._started:
            raise RuntimeError("StreamingSession.run() may only be called once")
        self._started = True

        finish_reason: str | None = None
        try:
            async with aclosing(self._provider.generate_stream(self._request)) as stream:
                async for chunk in stream:
                    if self._cancelled:
                        break
                    if chunk.is_final:
                        if chunk.result is not None:
                            finish_reason = chunk.result.finish_reason
                        continue
                    if chunk.text:
                        self._parts.append(chunk.text)
                        await self._on_delta(chunk.text)
        except asyncio.CancelledError:
            self._cancelled = True
            logger.info(
                "Stream for %s %s cancelled after %d chars",
                self.target.kind, self.target.target_id, len(self.text),
            )
            await self._complete()
            raise
        except Exception as e:
            logger.warning(
                "Stream for %s %s failed after %d chars: %s",
                self.target.kind, self.target.target_id, len(self.text), e,
            )
            await self._complete()
            raise

        await self._complete()
        return StreamOutcome(
            target=self.target,
            text=self.text,
            finish_reason=finish_reason,
            cancelled=self._cancelled,
        )

    async def _complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        await self._on_complete(self.text)
