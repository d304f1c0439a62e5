"""Pure-function tests for the tree navigator."""

from ytangent.trees import navigator
from tests.fixtures import arena, make_node


def _branching_arena():
    """root -> a -> (b, c); b -> d. Later minutes are newer."""
    return arena(
        make_node("root", minute=0),
        make_node("a", "root", depth=1, minute=1),
        make_node("b", "a", depth=2, minute=2),
        make_node("c", "a", depth=2, minute=3),
        make_node("d", "b", depth=3, minute=4),
    )


class TestPathToRoot:
    def test_root_first_target_last(self):
        nodes = _branching_arena()
        path = navigator.path_to_root(nodes, "d")
        assert [n.node_id for n in path] == ["root", "a", "b", "d"]

    def test_path_properties_hold_for_every_node(self):
        nodes = _branching_arena()
        for node_id, node in nodes.items():
            path = navigator.path_to_root(nodes, node_id)
            assert path[-1].node_id == node_id
            assert path[0].parent_id is None
            assert node.depth == len(path) - 1

    def test_absent_node_yields_empty(self):
        assert navigator.path_to_root(_branching_arena(), "ghost") == []

    def test_excludes_sibling_branches(self):
        path_ids = {n.node_id for n in navigator.path_to_root(_branching_arena(), "c")}
        assert "b" not in path_ids
        assert "d" not in path_ids

    def test_broken_chain_stops_at_last_resolvable(self):
        nodes = arena(make_node("x", "missing-parent", depth=1))
        assert [n.node_id for n in navigator.path_to_root(nodes, "x")] == ["x"]

    def test_cycle_terminates(self):
        nodes = arena(make_node("p", "q"), make_node("q", "p"))
        path = navigator.path_to_root(nodes, "p")
        assert len(path) == 2


class TestSiblings:
    def test_includes_self_sorted_by_created_at(self):
        nodes = _branching_arena()
        sibs = navigator.siblings(nodes, "c")
        assert [s.node_id for s in sibs] == ["b", "c"]

    def test_only_child_returns_single_entry(self):
        sibs = navigator.siblings(_branching_arena(), "a")
        assert [s.node_id for s in sibs] == ["a"]

    def test_root_siblings_share_null_parent(self):
        nodes = _branching_arena()
        nodes["root2"] = make_node("root2", minute=9)
        assert [s.node_id for s in navigator.siblings(nodes, "root")] == ["root", "root2"]

    def test_sorted_even_when_arena_is_unordered(self):
        nodes = arena(
            make_node("p"),
            make_node("late", "p", depth=1, minute=5),
            make_node("early", "p", depth=1, minute=1),
        )
        assert [s.node_id for s in navigator.siblings(nodes, "late")] == ["early", "late"]

    def test_absent_node_yields_empty(self):
        assert navigator.siblings(_branching_arena(), "ghost") == []


class TestBranchInfo:
    def test_preview_truncates_at_fifty_chars(self):
        info = navigator.to_branch_info(make_node("n", user_message="x" * 60))
        assert info.preview == "x" * 50 + "..."

    def test_short_preview_unchanged(self):
        info = navigator.to_branch_info(make_node("n", user_message="short"))
        assert info.preview == "short"

    def test_default_branch_name(self):
        node = make_node("n", user_message="Tell me about quantum physics please")
        assert navigator.default_branch_name(node) == "Branch from Tell me about quantu..."


class TestLatestLeaf:
    def test_picks_newest_leaf(self):
        assert navigator.latest_leaf(_branching_arena().values()).node_id == "d"

    def test_ignores_newer_interior_nodes(self):
        nodes = arena(
            make_node("root", minute=0),
            make_node("leaf", "root", depth=1, minute=1),
            make_node("root2", minute=2),
            make_node("leaf2", "root2", depth=1, minute=3),
            make_node("old-leaf", "root", depth=1, minute=0),
        )
        assert navigator.latest_leaf(nodes.values()).node_id == "leaf2"

    def test_empty_yields_none(self):
        assert navigator.latest_leaf([]) is None


class TestRelations:
    def test_children_oldest_first(self):
        assert [n.node_id for n in navigator.children(_branching_arena(), "a")] == ["b", "c"]

    def test_is_ancestor(self):
        nodes = _branching_arena()
        assert navigator.is_ancestor(nodes, "root", "d")
        assert navigator.is_ancestor(nodes, "b", "d")
        assert not navigator.is_ancestor(nodes, "c", "d")
        assert not navigator.is_ancestor(nodes, "d", "d")

    def test_descendants_breadth_first(self):
        ids = [n.node_id for n in navigator.descendants(_branching_arena(), "a")]
        assert ids == ["b", "c", "d"]

    def test_leaf_has_no_descendants(self):
        assert navigator.descendants(_branching_arena(), "d") == []
