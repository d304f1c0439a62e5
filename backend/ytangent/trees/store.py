"""Node store: the in-memory node arena for one conversation.

Writes go through the event store and projector first; the arena is only
updated after the write succeeds, so a PersistenceError leaves it untouched.
"""

from collections.abc import Mapping
from types import MappingProxyType
from uuid import uuid4

from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore, commit_event, make_event
from ytangent.models import Node, NodeCreatedPayload, NodeResponseUpdatedPayload


class NodeStore:
    """Arena of Nodes keyed by node_id, owned by a single conversation."""

    def __init__(
        self,
        conversation_id: str,
        store: EventStore,
        projector: StateProjector,
    ) -> None:
        self.conversation_id = conversation_id
        self._store = store
        self._projector = projector
        self._nodes: dict[str, Node] = {}

    @property
    def nodes(self) -> Mapping[str, Node]:
        """Read-only view of the arena, in creation order."""
        return MappingProxyType(self._nodes)

    def get(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    async def load(self) -> list[Node]:
        """Replace the arena with the projected nodes of this conversation."""
        rows = await self._projector.get_nodes(self.conversation_id)
        self._nodes = {row["node_id"]: Node.model_validate(row) for row in rows}
        return list(self._nodes.values())

    async def insert(
        self,
        user_message: str,
        parent_id: str | None,
        branch_name: str | None,
        depth: int,
    ) -> Node:
        """Persist a new node and add it to the arena."""
        payload = NodeCreatedPayload(
            node_id=str(uuid4()),
            parent_id=parent_id,
            user_message=user_message,
            branch_name=branch_name,
            depth=depth,
        )
        event = make_event(self.conversation_id, "NodeCreated", payload)
        await commit_event(self._store, self._projector, event)

        node = Node(
            node_id=payload.node_id,
            conversation_id=self.conversation_id,
            parent_id=parent_id,
            user_message=user_message,
            branch_name=branch_name,
            depth=depth,
            created_at=event.timestamp.isoformat(),
        )
        self._nodes[node.node_id] = node
        return node

    async def update_response(self, node_id: str, text: str) -> Node | None:
        """Set a node's assistant_response. None if the node is absent.

        Writing the text the node already holds is a no-op, so callers may
        repeat the final write safely.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return None
        if node.assistant_response == text:
            return node

        payload = NodeResponseUpdatedPayload(node_id=node_id, assistant_response=text)
        event = make_event(self.conversation_id, "NodeResponseUpdated", payload)
        await commit_event(self._store, self._projector, event)

        updated = node.model_copy(update={"assistant_response": text})
        self._nodes[node_id] = updated
        return updated
