"""Branch controller: node creation, forking, and active-branch switching.

The active node is an explicit tagged state (EmptyState | ActiveState) and is
only changed through the operations below. Lookups that miss are no-ops that
return None and log a warning; persistence failures raise PersistenceError
and leave the state as it was.
"""

import asyncio
import logging
from typing import Literal

from pydantic import BaseModel

from ytangent.models import BranchInfo, Node
from ytangent.trees import navigator
from ytangent.trees.store import NodeStore

logger = logging.getLogger(__name__)


class EmptyState(BaseModel):
    kind: Literal["empty"] = "empty"


class ActiveState(BaseModel):
    kind: Literal["active"] = "active"
    node_id: str


BranchState = EmptyState | ActiveState


class BranchController:
    """Owns the active-node state machine for one conversation."""

    def __init__(self, store: NodeStore) -> None:
        self._store = store
        self._state: BranchState = EmptyState()
        # Serializes writers when several requests target one conversation.
        self._lock = asyncio.Lock()

    @property
    def conversation_id(self) -> str:
        return self._store.conversation_id

    @property
    def store(self) -> NodeStore:
        return self._store

    @property
    def state(self) -> BranchState:
        return self._state

    @property
    def active_node_id(self) -> str | None:
        if isinstance(self._state, ActiveState):
            return self._state.node_id
        return None

    async def load(self) -> BranchState:
        """Load the arena and activate the most recently created leaf."""
        nodes = await self._store.load()
        leaf = navigator.latest_leaf(nodes)
        self._state = ActiveState(node_id=leaf.node_id) if leaf else EmptyState()
        return self._state

    # -- Transitions --

    async def create_node(
        self,
        user_message: str,
        parent_id: str | None = None,
        branch_name: str | None = None,
    ) -> Node | None:
        """Create a node under parent_id (or a root when None) and activate it.

        Returns None, without changing state, if parent_id is not in the store.
        """
        async with self._lock:
            depth = 0
            if parent_id is not None:
                parent = self._store.get(parent_id)
                if parent is None:
                    logger.warning(
                        "create_node: parent %s not in conversation %s",
                        parent_id, self.conversation_id,
                    )
                    return None
                depth = parent.depth + 1

            node = await self._store.insert(user_message, parent_id, branch_name, depth)
            self._state = ActiveState(node_id=node.node_id)
            return node

    async def send_message(self, user_message: str) -> Node | None:
        """Continue the conversation from the active node."""
        return await self.create_node(user_message, self.active_node_id)

    async def fork_from_node(
        self,
        node_id: str,
        user_message: str,
        branch_name: str | None = None,
    ) -> Node | None:
        """Create a sibling of node_id, i.e. a new child of node_id's parent.

        Forking a root therefore yields a second root-level node.
        """
        node = self._store.get(node_id)
        if node is None:
            logger.warning(
                "fork_from_node: node %s not in conversation %s",
                node_id, self.conversation_id,
            )
            return None
        return await self.create_node(
            user_message,
            node.parent_id,
            branch_name or navigator.default_branch_name(node),
        )

    def switch_to_branch(self, node_id: str) -> bool:
        """Activate node_id. Returns False (state unchanged) if it is absent."""
        if node_id not in self._store:
            logger.warning(
                "switch_to_branch: node %s not in conversation %s",
                node_id, self.conversation_id,
            )
            return False
        self._state = ActiveState(node_id=node_id)
        return True

    async def update_node_response(self, node_id: str, text: str) -> Node | None:
        """Set the assistant reply for node_id. Safe to call repeatedly."""
        async with self._lock:
            node = await self._store.update_response(node_id, text)
        if node is None:
            logger.warning(
                "update_node_response: node %s not in conversation %s",
                node_id, self.conversation_id,
            )
        return node

    # -- Derived views --

    def path_to(self, node_id: str) -> list[Node]:
        return navigator.path_to_root(self._store.nodes, node_id)

    def active_path(self) -> list[Node]:
        node_id = self.active_node_id
        if node_id is None:
            return []
        return self.path_to(node_id)

    def siblings(self, node_id: str) -> list[BranchInfo]:
        return navigator.siblings(self._store.nodes, node_id)

    def branch_points(self) -> dict[str, list[BranchInfo]]:
        """Sibling choices for each active-path node that sits at a fork."""
        points: dict[str, list[BranchInfo]] = {}
        for node in self.active_path():
            sibs = self.siblings(node.node_id)
            if len(sibs) > 1:
                points[node.node_id] = sibs
        return points
