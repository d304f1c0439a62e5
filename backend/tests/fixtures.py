"""Builders for envelopes and SSE bodies, plus a scripted FakeProvider."""

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from httpx import AsyncClient

from ytangent.db.connection import Database
from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore, commit_event, make_event
from ytangent.models import (
    ConversationCreatedPayload,
    EventEnvelope,
    Node,
    NodeCreatedPayload,
    Tangent,
    TangentTurn,
)
from ytangent.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
)
from ytangent.tangents.controller import TangentController
from ytangent.tangents.store import TangentStore
from ytangent.trees.controller import BranchController
from ytangent.trees.store import NodeStore

_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)


# -- Providers --


class FakeProvider(LLMProvider):
    """Test provider that streams canned chunks.

    With error set, the error is raised before chunk index fail_after is
    delivered. With gate set, the stream waits on it after pause_after chunks.
    """

    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        error: Exception | None = None,
        fail_after: int = 0,
        gate: asyncio.Event | None = None,
        pause_after: int = 1,
    ) -> None:
        self.chunks = chunks if chunks is not None else ["Fake ", "response"]
        self.error = error
        self.fail_after = fail_after
        self.gate = gate
        self.pause_after = pause_after
        self.requests: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return "fake"

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        for i, piece in enumerate(self.chunks):
            if self.error is not None and i == self.fail_after:
                raise self.error
            if self.gate is not None and i == self.pause_after:
                await self.gate.wait()
            yield StreamChunk(type="text_delta", text=piece)
        if self.error is not None and self.fail_after >= len(self.chunks):
            raise self.error
        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content="".join(self.chunks),
                model="fake-model",
                finish_reason="end_turn",
                usage={"input_tokens": 10, "output_tokens": 5},
                latency_ms=42,
            ),
        )


# -- Envelopes --


def make_conversation_created_envelope(
    conversation_id: str | None = None,
    title: str = "Test Chat",
    folder_id: str | None = None,
) -> EventEnvelope:
    """Create a ConversationCreated EventEnvelope for testing."""
    payload = ConversationCreatedPayload(title=title, folder_id=folder_id)
    return make_event(conversation_id or str(uuid4()), "ConversationCreated", payload)


def make_node_created_envelope(
    conversation_id: str,
    node_id: str | None = None,
    parent_id: str | None = None,
    user_message: str = "Hello",
    **payload_overrides: Any,
) -> EventEnvelope:
    """A NodeCreated envelope; unspecified fields get fresh ids."""
    payload = NodeCreatedPayload(
        node_id=node_id or str(uuid4()),
        parent_id=parent_id,
        user_message=user_message,
        **payload_overrides,
    )
    return make_event(conversation_id, "NodeCreated", payload)


# -- Plain model builders for pure-function tests --


def make_node(
    node_id: str,
    parent_id: str | None = None,
    user_message: str | None = None,
    assistant_response: str | None = None,
    *,
    depth: int = 0,
    branch_name: str | None = None,
    minute: int = 0,
) -> Node:
    """A Node whose created_at is `minute` minutes after a fixed epoch."""
    return Node(
        node_id=node_id,
        conversation_id="conv",
        parent_id=parent_id,
        user_message=user_message if user_message is not None else f"user {node_id}",
        assistant_response=assistant_response,
        branch_name=branch_name,
        depth=depth,
        created_at=(_EPOCH + timedelta(minutes=minute)).isoformat(),
    )


def arena(*nodes: Node) -> dict[str, Node]:
    return {n.node_id: n for n in nodes}


def make_tangent(
    tangent_id: str,
    highlighted_text: str = "span",
    turns: list[tuple[str, str]] | None = None,
    sub_tangents: list[Tangent] | None = None,
    message_id: str = "m1",
) -> Tangent:
    """A Tangent with (role, content) turns; defaults to one user turn."""
    turns = turns if turns is not None else [("user", f"about {tangent_id}")]
    created_at = _EPOCH.isoformat()
    return Tangent(
        tangent_id=tangent_id,
        message_id=message_id,
        highlighted_text=highlighted_text,
        conversation=[
            TangentTurn(
                turn_id=f"{tangent_id}-{i}", role=role, content=content, created_at=created_at
            )
            for i, (role, content) in enumerate(turns)
        ],
        sub_tangents=sub_tangents or [],
        created_at=created_at,
    )


# -- Controllers over a real (in-memory) database --


async def seed_conversation(db: Database, conversation_id: str | None = None) -> str:
    """Project a ConversationCreated event and return its id."""
    event = make_conversation_created_envelope(conversation_id)
    await commit_event(EventStore(db), StateProjector(db), event)
    return event.conversation_id


async def make_branch_controller(db: Database, conversation_id: str) -> BranchController:
    controller = BranchController(NodeStore(conversation_id, EventStore(db), StateProjector(db)))
    await controller.load()
    return controller


async def make_tangent_controller(db: Database, conversation_id: str) -> TangentController:
    store = TangentStore(conversation_id, EventStore(db), StateProjector(db))
    await store.load()
    return TangentController(store)


# -- HTTP helpers --


async def create_conversation(client: AsyncClient, **kwargs: Any) -> dict:
    resp = await client.post("/api/conversations", json=kwargs)
    assert resp.status_code == 201
    return resp.json()


async def send_message(
    client: AsyncClient, conversation_id: str, content: str, **options: Any
) -> dict:
    """POST a message (generating with the fake provider by default)."""
    body = {"content": content, "provider": "fake", **options}
    resp = await client.post(f"/api/conversations/{conversation_id}/messages", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def parse_sse(text: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in text.strip().split("\n\n"):
        event_type = ""
        data = ""
        for line in block.split("\n"):
            if line.startswith("event: "):
                event_type = line[len("event: "):]
            elif line.startswith("data: "):
                data = line[len("data: "):]
        if event_type:
            events.append((event_type, json.loads(data)))
    return events
