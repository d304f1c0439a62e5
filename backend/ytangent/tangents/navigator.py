"""Pure functions over nested tangent trees.

Tangents carry no parent pointer, so lineage is recovered with a DFS that
keeps its own parent bookkeeping.
"""

from collections.abc import Iterator, Sequence

from ytangent.models import Tangent


def iter_tangents(tangents: Sequence[Tangent]) -> Iterator[Tangent]:
    """Pre-order walk over every tangent in the forest."""
    stack = list(reversed(tangents))
    while stack:
        tangent = stack.pop()
        yield tangent
        stack.extend(reversed(tangent.sub_tangents))


def find_tangent(tangents: Sequence[Tangent], tangent_id: str) -> Tangent | None:
    """Locate a tangent at any nesting depth. None if absent."""
    for tangent in tangents:
        if tangent.tangent_id == tangent_id:
            return tangent
        found = find_tangent(tangent.sub_tangents, tangent_id)
        if found is not None:
            return found
    return None


def tangent_lineage(tangents: Sequence[Tangent], tangent_id: str) -> list[Tangent]:
    """Tangents from the top-level ancestor down to tangent_id, inclusive.

    Empty if tangent_id is not in the forest.
    """
    parents: dict[str, Tangent | None] = {}
    by_id: dict[str, Tangent] = {}
    stack: list[tuple[Tangent, Tangent | None]] = [(t, None) for t in reversed(tangents)]

    while stack:
        tangent, parent = stack.pop()
        if tangent.tangent_id in by_id:
            continue
        by_id[tangent.tangent_id] = tangent
        parents[tangent.tangent_id] = parent
        if tangent.tangent_id == tangent_id:
            break
        stack.extend((child, tangent) for child in reversed(tangent.sub_tangents))

    if tangent_id not in by_id:
        return []

    lineage: list[Tangent] = []
    current: Tangent | None = by_id[tangent_id]
    while current is not None:
        lineage.append(current)
        current = parents[current.tangent_id]
    lineage.reverse()
    return lineage


def nesting_depth(tangents: Sequence[Tangent], tangent_id: str) -> int:
    """0 for a top-level tangent, 1 for its sub-tangents, and so on. -1 if absent."""
    return len(tangent_lineage(tangents, tangent_id)) - 1
