"""Tangent controller: new tangents, replies, and sub-tangents.

The three operations are dispatched by caller intent, never inferred from the
shape of the data. Lookups search the full nested forest under a message; an
unknown id is a logged no-op that returns None and leaves every other tangent
untouched.
"""

import asyncio
import logging

from ytangent.models import Tangent, TangentTurn
from ytangent.tangents import navigator
from ytangent.tangents.store import TangentStore

logger = logging.getLogger(__name__)


class TangentController:
    """Orchestrates tangent mutations for one conversation."""

    def __init__(self, store: TangentStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    @property
    def store(self) -> TangentStore:
        return self._store

    def tangents_for(self, message_id: str) -> list[Tangent]:
        return self._store.tangents_for(message_id)

    def locate(
        self, tangent_id: str, message_id: str | None = None
    ) -> tuple[str, Tangent] | None:
        """Find (message_id, tangent) through the store's flat index.

        With message_id, a tangent anchored elsewhere counts as not found.
        """
        tangent = self._store.get(tangent_id)
        if tangent is None:
            return None
        if message_id is not None and tangent.message_id != message_id:
            return None
        return tangent.message_id, tangent

    def lineage(self, tangent_id: str) -> list[Tangent]:
        located = self.locate(tangent_id)
        if located is None:
            return []
        message_id, _ = located
        return navigator.tangent_lineage(self._store.tangents_for(message_id), tangent_id)

    async def create_tangent(
        self, message_id: str, highlighted_text: str, content: str
    ) -> Tangent:
        """Start a top-level tangent on a message with the user's opening remark."""
        async with self._lock:
            return await self._store.insert(message_id, highlighted_text, content)

    async def reply_to_tangent(
        self,
        tangent_id: str,
        content: str,
        *,
        message_id: str | None = None,
    ) -> Tangent | None:
        """Append a user turn to an existing tangent's own conversation."""
        async with self._lock:
            located = self.locate(tangent_id, message_id)
            if located is None:
                logger.warning("reply_to_tangent: tangent %s not found", tangent_id)
                return None
            _, tangent = located
            await self._store.append_turn(tangent, "user", content)
            return tangent

    async def create_sub_tangent(
        self,
        parent_tangent_id: str,
        highlighted_text: str,
        content: str,
        *,
        message_id: str | None = None,
    ) -> Tangent | None:
        """Nest a new tangent under a span of the parent tangent's conversation."""
        async with self._lock:
            located = self.locate(parent_tangent_id, message_id)
            if located is None:
                logger.warning(
                    "create_sub_tangent: parent tangent %s not found", parent_tangent_id
                )
                return None
            anchor_message_id, parent = located
            return await self._store.insert(
                anchor_message_id, highlighted_text, content, parent=parent
            )

    async def append_assistant_reply(
        self, tangent_id: str, content: str
    ) -> TangentTurn | None:
        """Record the AI reply that closes a streaming exchange on a tangent."""
        async with self._lock:
            located = self.locate(tangent_id)
            if located is None:
                logger.warning("append_assistant_reply: tangent %s not found", tangent_id)
                return None
            _, tangent = located
            return await self._store.append_turn(tangent, "assistant", content)
