"""The event log: every change to a conversation, in commit order.

Rows are never updated or deleted. The projected tables are derived from
this log and can be rebuilt from it.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import BaseModel

from ytangent.db.connection import Database
from ytangent.models import EventEnvelope

if TYPE_CHECKING:
    from ytangent.events.projector import StateProjector

logger = logging.getLogger(__name__)

_COLUMNS = (
    "sequence_num", "event_id", "conversation_id", "timestamp",
    "device_id", "event_type", "payload",
)


class EventStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def transaction(self):
        return self._db.transaction()

    async def append(self, envelope: EventEnvelope) -> int:
        """Write one event and return its sequence number.

        A duplicate event_id violates the UNIQUE constraint and raises
        sqlite3.IntegrityError.
        """
        row = envelope.model_dump(mode="json", exclude={"sequence_num"})
        row["payload"] = json.dumps(row["payload"])
        names = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        cursor = await self._db.execute(
            f"INSERT INTO events ({names}) VALUES ({marks})", tuple(row.values())
        )
        return cursor.lastrowid

    async def get_events(
        self, conversation_id: str, event_type: str | None = None
    ) -> list[EventEnvelope]:
        """A conversation's events in sequence order, optionally of one type."""
        sql = f"SELECT {', '.join(_COLUMNS)} FROM events WHERE conversation_id = ?"
        params: tuple = (conversation_id,)
        if event_type is not None:
            sql += " AND event_type = ?"
            params += (event_type,)
        rows = await self._db.fetchall(sql + " ORDER BY sequence_num", params)
        return [_envelope_from_row(row) for row in rows]


def _envelope_from_row(row) -> EventEnvelope:
    fields = dict(zip(_COLUMNS, row))
    fields["payload"] = json.loads(fields["payload"])
    return EventEnvelope.model_validate(fields)


def make_event(
    conversation_id: str, event_type: str, payload: BaseModel
) -> EventEnvelope:
    """Wrap a payload in a fresh envelope stamped with the current UTC time."""
    return EventEnvelope(
        event_id=uuid4().hex,
        conversation_id=conversation_id,
        timestamp=datetime.now(UTC),
        event_type=event_type,
        payload=payload.model_dump(),
    )


async def commit_event(
    store: EventStore, projector: "StateProjector", event: EventEnvelope
) -> None:
    """Log an event and apply it to the projected tables atomically.

    Storage failures roll both back and surface as PersistenceError.
    """
    try:
        async with store.transaction():
            await store.append(event)
            await projector.project([event])
    except (sqlite3.Error, ValueError) as e:
        logger.error(
            "Failed to persist %s for conversation %s: %s",
            event.event_type, event.conversation_id, e,
        )
        raise PersistenceError(event.event_type, str(e)) from e


class PersistenceError(Exception):
    def __init__(self, event_type: str, detail: str) -> None:
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Failed to persist {event_type}: {detail}")
