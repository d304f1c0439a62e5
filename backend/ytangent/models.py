"""ytangent domain types and the event vocabulary.

Nodes form the primary branching tree and tangents form the side-thread
forests hung off assistant messages. Every change to either is recorded as
an EventEnvelope carrying one of the payloads below.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

# -- Domain types --


class SamplingParams(BaseModel):
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int = 2048
    stop_sequences: list[str] | None = None


class Conversation(BaseModel):
    conversation_id: str
    title: str = "New Chat"
    folder_id: str | None = None
    created_at: str
    updated_at: str


class Node(BaseModel):
    """One turn of the primary tree: a user message plus its assistant reply."""

    node_id: str
    conversation_id: str
    parent_id: str | None = None
    user_message: str
    assistant_response: str | None = None  # None while a reply is in flight
    branch_name: str | None = None
    depth: int = 0
    created_at: str


class BranchInfo(BaseModel):
    """Derived sibling summary for the branch chooser. Never persisted."""

    node_id: str
    branch_name: str | None = None
    preview: str
    created_at: str


class TangentTurn(BaseModel):
    turn_id: str
    role: Literal["user", "assistant"]
    content: str
    created_at: str


class Tangent(BaseModel):
    """A side-thread anchored to a highlighted span of a message.

    Sub-tangents are owned by their parent and anchored to a span inside the
    parent's own conversation.
    """

    tangent_id: str
    message_id: str
    highlighted_text: str
    conversation: list[TangentTurn] = Field(default_factory=list)
    sub_tangents: list["Tangent"] = Field(default_factory=list)
    created_at: str


class ContextUsage(BaseModel):
    total_tokens: int
    max_tokens: int
    breakdown: dict[str, int]  # by role: system, user, assistant
    truncated_count: int = 0


# -- Event payloads, keyed by event type below --


class ConversationCreatedPayload(BaseModel):
    title: str = "New Chat"
    folder_id: str | None = None


class ConversationTitleUpdatedPayload(BaseModel):
    old_title: str | None = None
    new_title: str


class ConversationFolderChangedPayload(BaseModel):
    old_folder_id: str | None = None
    new_folder_id: str | None = None


class ConversationDeletedPayload(BaseModel):
    reason: str | None = None


class NodeCreatedPayload(BaseModel):
    node_id: str
    parent_id: str | None = None
    user_message: str
    branch_name: str | None = None
    depth: int = 0


class NodeResponseUpdatedPayload(BaseModel):
    node_id: str
    assistant_response: str


class TangentCreatedPayload(BaseModel):
    tangent_id: str
    message_id: str
    parent_tangent_id: str | None = None
    highlighted_text: str
    turn_id: str  # the opening user turn
    content: str


class TangentTurnAppendedPayload(BaseModel):
    tangent_id: str
    turn_id: str
    role: Literal["user", "assistant"]
    content: str


# -- Registry --

EVENT_TYPES: dict[str, type[BaseModel]] = {
    "ConversationCreated": ConversationCreatedPayload,
    "ConversationTitleUpdated": ConversationTitleUpdatedPayload,
    "ConversationFolderChanged": ConversationFolderChangedPayload,
    "ConversationDeleted": ConversationDeletedPayload,
    "NodeCreated": NodeCreatedPayload,
    "NodeResponseUpdated": NodeResponseUpdatedPayload,
    "TangentCreated": TangentCreatedPayload,
    "TangentTurnAppended": TangentTurnAppendedPayload,
}


# -- Envelope --


class EventEnvelope(BaseModel):
    """One row of the event log: routing metadata around a payload dict."""

    event_id: str
    conversation_id: str
    timestamp: datetime
    device_id: str = "local"
    event_type: str
    payload: dict[str, Any]
    sequence_num: int | None = None  # set when read back from the log

    def typed_payload(self) -> BaseModel:
        """The payload parsed as the model registered for event_type."""
        payload_cls = EVENT_TYPES[self.event_type]
        return payload_cls.model_validate(self.payload)
