"""Tangent store: the tangent forests of one conversation.

Each anchor message owns an independent forest of nested Tangents. Besides the
nested lists, the store keeps a flat index by tangent_id so appends locate
their target directly and mutate it in place.
"""

from datetime import datetime
from uuid import uuid4

from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore, commit_event, make_event
from ytangent.models import (
    Tangent,
    TangentCreatedPayload,
    TangentTurn,
    TangentTurnAppendedPayload,
)


class TangentStore:
    """Owns the Tangent trees of every message in a conversation."""

    def __init__(
        self,
        conversation_id: str,
        store: EventStore,
        projector: StateProjector,
    ) -> None:
        self.conversation_id = conversation_id
        self._store = store
        self._projector = projector
        self._roots: dict[str, list[Tangent]] = {}
        self._by_id: dict[str, Tangent] = {}

    def tangents_for(self, message_id: str) -> list[Tangent]:
        """Top-level tangents of a message, oldest first."""
        return self._roots.get(message_id, [])

    def get(self, tangent_id: str) -> Tangent | None:
        return self._by_id.get(tangent_id)

    async def load(self) -> None:
        """Rebuild the forests from projected rows."""
        tangent_rows = await self._projector.get_tangents(self.conversation_id)
        turn_rows = await self._projector.get_tangent_turns(self.conversation_id)

        self._roots = {}
        self._by_id = {}
        for row in tangent_rows:
            tangent = Tangent(
                tangent_id=row["tangent_id"],
                message_id=row["message_id"],
                highlighted_text=row["highlighted_text"],
                created_at=row["created_at"],
            )
            self._by_id[tangent.tangent_id] = tangent

        # Rows arrive in created_at order, so every child list ends up oldest first
        for row in tangent_rows:
            tangent = self._by_id[row["tangent_id"]]
            parent = self._by_id.get(row["parent_tangent_id"] or "")
            if parent is not None:
                parent.sub_tangents.append(tangent)
            else:
                self._roots.setdefault(tangent.message_id, []).append(tangent)

        for row in turn_rows:
            tangent = self._by_id.get(row["tangent_id"])
            if tangent is not None:
                tangent.conversation.append(TangentTurn.model_validate(row))

    async def insert(
        self,
        message_id: str,
        highlighted_text: str,
        content: str,
        parent: Tangent | None = None,
    ) -> Tangent:
        """Persist a new tangent with its opening user turn and attach it."""
        payload = TangentCreatedPayload(
            tangent_id=str(uuid4()),
            message_id=message_id,
            parent_tangent_id=parent.tangent_id if parent else None,
            highlighted_text=highlighted_text,
            turn_id=str(uuid4()),
            content=content,
        )
        event = make_event(self.conversation_id, "TangentCreated", payload)
        await commit_event(self._store, self._projector, event)

        created_at = _iso(event.timestamp)
        tangent = Tangent(
            tangent_id=payload.tangent_id,
            message_id=message_id,
            highlighted_text=highlighted_text,
            conversation=[
                TangentTurn(
                    turn_id=payload.turn_id,
                    role="user",
                    content=content,
                    created_at=created_at,
                )
            ],
            created_at=created_at,
        )
        self._by_id[tangent.tangent_id] = tangent
        if parent is not None:
            parent.sub_tangents.append(tangent)
        else:
            self._roots.setdefault(message_id, []).append(tangent)
        return tangent

    async def append_turn(
        self, tangent: Tangent, role: str, content: str
    ) -> TangentTurn:
        """Persist a turn and append it to tangent.conversation in place."""
        payload = TangentTurnAppendedPayload(
            tangent_id=tangent.tangent_id,
            turn_id=str(uuid4()),
            role=role,
            content=content,
        )
        event = make_event(self.conversation_id, "TangentTurnAppended", payload)
        await commit_event(self._store, self._projector, event)

        turn = TangentTurn(
            turn_id=payload.turn_id,
            role=payload.role,
            content=content,
            created_at=_iso(event.timestamp),
        )
        tangent.conversation.append(turn)
        return turn


def _iso(timestamp: datetime) -> str:
    return timestamp.isoformat()
