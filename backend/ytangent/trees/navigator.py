"""Pure functions over a conversation's node arena.

Nodes live in a flat mapping keyed by node_id with parent_id edges; nothing
here mutates the mapping. Missing ids produce empty results, never errors.
"""

from collections.abc import Iterable, Mapping

from ytangent.models import BranchInfo, Node

PREVIEW_LENGTH = 50
BRANCH_NAME_PREFIX_LENGTH = 20


def path_to_root(nodes: Mapping[str, Node], node_id: str) -> list[Node]:
    """Walk parent links from node_id up to the root. Returns root first.

    Empty if node_id is absent. A broken chain stops at the last resolvable
    ancestor; a cycle stops at the first repeated node.
    """
    chain: list[Node] = []
    visited: set[str] = set()
    current_id: str | None = node_id

    while current_id is not None and current_id not in visited:
        node = nodes.get(current_id)
        if node is None:
            break
        visited.add(current_id)
        chain.append(node)
        current_id = node.parent_id

    chain.reverse()
    return chain


def make_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    """Fixed-length prefix of a user message for branch choosers."""
    if len(text) > length:
        return text[:length] + "..."
    return text


def default_branch_name(node: Node) -> str:
    """Label for a fork when the user did not name it."""
    return f"Branch from {node.user_message[:BRANCH_NAME_PREFIX_LENGTH]}..."


def to_branch_info(node: Node) -> BranchInfo:
    return BranchInfo(
        node_id=node.node_id,
        branch_name=node.branch_name,
        preview=make_preview(node.user_message),
        created_at=node.created_at,
    )


def siblings(nodes: Mapping[str, Node], node_id: str) -> list[BranchInfo]:
    """All nodes sharing node_id's parent (node_id included), oldest first.

    Callers suppress branch indicators when the result has one entry.
    """
    node = nodes.get(node_id)
    if node is None:
        return []

    same_parent = [
        n for n in nodes.values()
        if n.parent_id == node.parent_id and n.conversation_id == node.conversation_id
    ]
    # sorted() is stable, so equal timestamps keep arena (creation) order
    same_parent = sorted(same_parent, key=lambda n: n.created_at)
    return [to_branch_info(n) for n in same_parent]


def children(nodes: Mapping[str, Node], node_id: str) -> list[Node]:
    """Direct children of node_id, oldest first."""
    return sorted(
        (n for n in nodes.values() if n.parent_id == node_id),
        key=lambda n: n.created_at,
    )


def latest_leaf(nodes: Iterable[Node]) -> Node | None:
    """The most recently created node that has no children. None if empty."""
    all_nodes = list(nodes)
    if not all_nodes:
        return None

    parent_ids = {n.parent_id for n in all_nodes if n.parent_id is not None}
    leaves = [n for n in all_nodes if n.node_id not in parent_ids]
    if not leaves:
        # Only possible with a cyclic arena; fall back to the newest node.
        leaves = all_nodes

    latest = leaves[0]
    for leaf in leaves[1:]:
        if leaf.created_at >= latest.created_at:
            latest = leaf
    return latest


def is_ancestor(nodes: Mapping[str, Node], ancestor_id: str, node_id: str) -> bool:
    """True if ancestor_id lies strictly above node_id on its root path."""
    if ancestor_id == node_id:
        return False
    return any(n.node_id == ancestor_id for n in path_to_root(nodes, node_id)[:-1])


def descendants(nodes: Mapping[str, Node], node_id: str) -> list[Node]:
    """Every node below node_id, breadth-first."""
    by_parent: dict[str, list[Node]] = {}
    for n in nodes.values():
        if n.parent_id is not None:
            by_parent.setdefault(n.parent_id, []).append(n)

    result: list[Node] = []
    frontier = list(by_parent.get(node_id, []))
    seen: set[str] = {node_id}
    while frontier:
        current = frontier.pop(0)
        if current.node_id in seen:
            continue
        seen.add(current.node_id)
        result.append(current)
        frontier.extend(by_parent.get(current.node_id, []))
    return result
