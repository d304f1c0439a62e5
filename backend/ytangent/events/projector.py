"""Applies logged events to the queryable tables.

Readers order by created_at with rowid as the tie-break, so rows sharing a
timestamp keep creation order.
"""

import logging
from collections.abc import Awaitable, Callable

from ytangent.db.connection import Database
from ytangent.models import (
    ConversationCreatedPayload,
    ConversationFolderChangedPayload,
    ConversationTitleUpdatedPayload,
    EventEnvelope,
    NodeCreatedPayload,
    NodeResponseUpdatedPayload,
    TangentCreatedPayload,
    TangentTurnAppendedPayload,
)

logger = logging.getLogger(__name__)


def _iso(event: EventEnvelope) -> str:
    return event.timestamp.isoformat()


class StateProjector:
    def __init__(self, db: Database) -> None:
        self._db = db
        self._handlers: dict[str, Callable[[EventEnvelope], Awaitable[None]]] = {
            "ConversationCreated": self._handle_conversation_created,
            "ConversationTitleUpdated": self._handle_conversation_title_updated,
            "ConversationFolderChanged": self._handle_conversation_folder_changed,
            "ConversationDeleted": self._handle_conversation_deleted,
            "NodeCreated": self._handle_node_created,
            "NodeResponseUpdated": self._handle_node_response_updated,
            "TangentCreated": self._handle_tangent_created,
            "TangentTurnAppended": self._handle_tangent_turn_appended,
        }

    async def project(self, events: list[EventEnvelope]) -> None:
        """Apply events in order. Types without a handler are logged and skipped."""
        for event in events:
            handler = self._handlers.get(event.event_type)
            if handler:
                await handler(event)
            else:
                logger.warning("No projection for event type %r", event.event_type)

    # -- Reads --

    async def get_conversation(self, conversation_id: str) -> dict | None:
        row = await self._db.fetchone(
            "SELECT * FROM conversations WHERE conversation_id = ?",
            (conversation_id,),
        )
        if row is None:
            return None
        return dict(row)

    async def list_conversations(self) -> list[dict]:
        """All conversations, newest first."""
        rows = await self._db.fetchall(
            "SELECT * FROM conversations ORDER BY created_at DESC, rowid DESC"
        )
        return [dict(row) for row in rows]

    async def get_nodes(self, conversation_id: str) -> list[dict]:
        rows = await self._db.fetchall(
            "SELECT * FROM nodes WHERE conversation_id = ? ORDER BY created_at, rowid",
            (conversation_id,),
        )
        return [dict(row) for row in rows]

    async def get_node(self, node_id: str) -> dict | None:
        row = await self._db.fetchone(
            "SELECT * FROM nodes WHERE node_id = ?", (node_id,)
        )
        return dict(row) if row is not None else None

    async def get_tangents(self, conversation_id: str) -> list[dict]:
        """Flat tangent rows for a conversation, ordered by creation time."""
        rows = await self._db.fetchall(
            "SELECT * FROM tangents WHERE conversation_id = ? ORDER BY created_at, rowid",
            (conversation_id,),
        )
        return [dict(row) for row in rows]

    async def get_tangent_turns(self, conversation_id: str) -> list[dict]:
        """All tangent turns for a conversation, ordered by creation time."""
        rows = await self._db.fetchall(
            """
            SELECT tt.* FROM tangent_turns AS tt
            JOIN tangents AS t ON t.tangent_id = tt.tangent_id
            WHERE t.conversation_id = ?
            ORDER BY tt.created_at, tt.rowid
            """,
            (conversation_id,),
        )
        return [dict(row) for row in rows]

    # -- Handlers --

    async def _handle_conversation_created(self, event: EventEnvelope) -> None:
        payload = ConversationCreatedPayload.model_validate(event.payload)
        timestamp = _iso(event)
        await self._db.execute(
            """
            INSERT OR REPLACE INTO conversations
                (conversation_id, title, folder_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (event.conversation_id, payload.title, payload.folder_id, timestamp, timestamp),
        )

    async def _handle_conversation_title_updated(self, event: EventEnvelope) -> None:
        payload = ConversationTitleUpdatedPayload.model_validate(event.payload)
        await self._db.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE conversation_id = ?",
            (payload.new_title, _iso(event), event.conversation_id),
        )

    async def _handle_conversation_folder_changed(self, event: EventEnvelope) -> None:
        payload = ConversationFolderChangedPayload.model_validate(event.payload)
        await self._db.execute(
            "UPDATE conversations SET folder_id = ?, updated_at = ? WHERE conversation_id = ?",
            (payload.new_folder_id, _iso(event), event.conversation_id),
        )

    async def _handle_conversation_deleted(self, event: EventEnvelope) -> None:
        """Remove every projection owned by the conversation. Children first."""
        cid = event.conversation_id
        await self._db.execute(
            "DELETE FROM tangent_turns WHERE tangent_id IN "
            "(SELECT tangent_id FROM tangents WHERE conversation_id = ?)",
            (cid,),
        )
        await self._db.execute(
            "UPDATE tangents SET parent_tangent_id = NULL WHERE conversation_id = ?",
            (cid,),
        )
        await self._db.execute("DELETE FROM tangents WHERE conversation_id = ?", (cid,))
        await self._db.execute(
            "UPDATE nodes SET parent_id = NULL WHERE conversation_id = ?", (cid,)
        )
        await self._db.execute("DELETE FROM nodes WHERE conversation_id = ?", (cid,))
        await self._db.execute(
            "DELETE FROM conversations WHERE conversation_id = ?", (cid,)
        )

    async def _handle_node_created(self, event: EventEnvelope) -> None:
        payload = NodeCreatedPayload.model_validate(event.payload)
        timestamp = _iso(event)
        await self._db.execute(
            """
            INSERT OR REPLACE INTO nodes
                (node_id, conversation_id, parent_id, user_message,
                 assistant_response, branch_name, depth, created_at, updated_at)
            VALUES (?, ?, ?, ?, NULL, ?, ?, ?, ?)
            """,
            (
                payload.node_id,
                event.conversation_id,
                payload.parent_id,
                payload.user_message,
                payload.branch_name,
                payload.depth,
                timestamp,
                timestamp,
            ),
        )
        await self._touch_conversation(event)

    async def _handle_node_response_updated(self, event: EventEnvelope) -> None:
        """Overwrite assistant_response in place. Repeated writes keep one row."""
        payload = NodeResponseUpdatedPayload.model_validate(event.payload)
        await self._db.execute(
            "UPDATE nodes SET assistant_response = ?, updated_at = ? WHERE node_id = ?",
            (payload.assistant_response, _iso(event), payload.node_id),
        )

    async def _handle_tangent_created(self, event: EventEnvelope) -> None:
        """A tangent row plus the user turn that opened it."""
        payload = TangentCreatedPayload.model_validate(event.payload)
        timestamp = _iso(event)
        await self._db.execute(
            """
            INSERT OR REPLACE INTO tangents
                (tangent_id, conversation_id, message_id, parent_tangent_id,
                 highlighted_text, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                payload.tangent_id,
                event.conversation_id,
                payload.message_id,
                payload.parent_tangent_id,
                payload.highlighted_text,
                timestamp,
            ),
        )
        await self._db.execute(
            """
            INSERT OR REPLACE INTO tangent_turns
                (turn_id, tangent_id, role, content, created_at)
            VALUES (?, ?, 'user', ?, ?)
            """,
            (payload.turn_id, payload.tangent_id, payload.content, timestamp),
        )
        await self._touch_conversation(event)

    async def _handle_tangent_turn_appended(self, event: EventEnvelope) -> None:
        payload = TangentTurnAppendedPayload.model_validate(event.payload)
        await self._db.execute(
            """
            INSERT OR REPLACE INTO tangent_turns
                (turn_id, tangent_id, role, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (payload.turn_id, payload.tangent_id, payload.role, payload.content, _iso(event)),
        )

    async def _touch_conversation(self, event: EventEnvelope) -> None:
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (_iso(event), event.conversation_id),
        )
