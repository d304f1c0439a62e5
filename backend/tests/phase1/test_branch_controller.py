"""Tests for BranchController: creation, forking, switching, and responses."""

import pytest

from ytangent.events.store import PersistenceError
from ytangent.trees.controller import ActiveState, EmptyState
from tests.fixtures import make_branch_controller, seed_conversation


@pytest.fixture
async def branch(db):
    conversation_id = await seed_conversation(db)
    return await make_branch_controller(db, conversation_id)


class TestCreateNode:
    async def test_empty_conversation_starts_empty(self, branch):
        assert isinstance(branch.state, EmptyState)
        assert branch.active_node_id is None
        assert branch.active_path() == []

    async def test_root_has_depth_zero_and_becomes_active(self, branch):
        node = await branch.create_node("Hi")
        assert node.depth == 0
        assert node.parent_id is None
        assert node.assistant_response is None
        assert branch.state == ActiveState(node_id=node.node_id)

    async def test_child_depth_is_parent_plus_one(self, branch):
        root = await branch.create_node("Hi")
        child = await branch.create_node("More", root.node_id)
        grandchild = await branch.create_node("Even more", child.node_id)
        assert (child.depth, grandchild.depth) == (1, 2)
        assert grandchild.depth == len(branch.path_to(grandchild.node_id)) - 1

    async def test_unknown_parent_is_noop(self, branch, caplog):
        root = await branch.create_node("Hi")
        result = await branch.create_node("Orphan", "ghost")
        assert result is None
        assert branch.active_node_id == root.node_id
        assert len(branch.store) == 1
        assert "ghost" in caplog.text

    async def test_send_message_continues_from_active(self, branch):
        first = await branch.send_message("one")
        second = await branch.send_message("two")
        assert first.parent_id is None
        assert second.parent_id == first.node_id
        assert [n.node_id for n in branch.active_path()] == [first.node_id, second.node_id]

    async def test_persistence_failure_leaves_state_unchanged(self, db, branch):
        root = await branch.create_node("Hi")
        # Dropping the table makes the projection write fail.
        await db.execute("DROP TABLE tangent_turns")
        await db.execute("DROP TABLE tangents")
        await db.execute("DROP TABLE nodes")
        with pytest.raises(PersistenceError):
            await branch.create_node("Lost", root.node_id)
        assert branch.active_node_id == root.node_id
        assert len(branch.store) == 1


class TestForkFromNode:
    async def test_fork_creates_sibling_not_child(self, branch):
        root = await branch.create_node("Hi")
        child = await branch.create_node("Child", root.node_id)
        fork = await branch.fork_from_node(child.node_id, "Alternative")
        assert fork.parent_id == child.parent_id
        assert fork.parent_id != child.node_id
        assert fork.depth == child.depth
        assert branch.active_node_id == fork.node_id

    async def test_fork_default_branch_name(self, branch):
        root = await branch.create_node("Explain the theory of relativity")
        fork = await branch.fork_from_node(root.node_id, "Other")
        assert fork.branch_name == "Branch from Explain the theory o..."

    async def test_fork_explicit_branch_name(self, branch):
        root = await branch.create_node("Hi")
        fork = await branch.fork_from_node(root.node_id, "x", branch_name="mine")
        assert fork.branch_name == "mine"

    async def test_fork_unknown_node_is_noop(self, branch):
        root = await branch.create_node("Hi")
        assert await branch.fork_from_node("ghost", "x") is None
        assert branch.active_node_id == root.node_id

    async def test_fork_from_root_scenario(self, branch):
        """Root R ("Hi") replied "Hello", then forked with a named branch."""
        root = await branch.create_node("Hi")
        await branch.update_node_response(root.node_id, "Hello")
        fork = await branch.fork_from_node(
            root.node_id, "Tell me about X", branch_name="X-exploration"
        )

        sibs = branch.siblings(root.node_id)
        assert [s.node_id for s in sibs] == [root.node_id, fork.node_id]
        assert sibs[1].branch_name == "X-exploration"
        assert [n.node_id for n in branch.path_to(fork.node_id)] == [fork.node_id]
        assert fork.depth == 0


class TestSwitchToBranch:
    async def test_switch_sets_active(self, branch):
        root = await branch.create_node("Hi")
        b1 = await branch.create_node("B1", root.node_id)
        b2 = await branch.fork_from_node(b1.node_id, "B2")
        assert branch.active_node_id == b2.node_id
        assert branch.switch_to_branch(b1.node_id) is True
        assert [n.node_id for n in branch.active_path()] == [root.node_id, b1.node_id]

    async def test_switch_to_absent_is_noop(self, branch):
        root = await branch.create_node("Hi")
        assert branch.switch_to_branch("ghost") is False
        assert branch.active_node_id == root.node_id

    async def test_branch_points_only_where_siblings_exist(self, branch):
        root = await branch.create_node("Hi")
        b1 = await branch.create_node("B1", root.node_id)
        b2 = await branch.fork_from_node(b1.node_id, "B2")
        leaf = await branch.create_node("Leaf", b2.node_id)

        points = branch.branch_points()
        assert set(points) == {b2.node_id}
        assert [s.node_id for s in points[b2.node_id]] == [b1.node_id, b2.node_id]
        assert leaf.node_id not in points


class TestUpdateNodeResponse:
    async def test_idempotent_growing_updates(self, db, branch):
        node = await branch.create_node("Hi")
        await branch.update_node_response(node.node_id, "partial")
        await branch.update_node_response(node.node_id, "partial+more")
        await branch.update_node_response(node.node_id, "partial+more")

        assert branch.store.get(node.node_id).assistant_response == "partial+more"
        rows = await db.fetchall("SELECT * FROM nodes WHERE node_id = ?", (node.node_id,))
        assert len(rows) == 1
        assert rows[0]["assistant_response"] == "partial+more"

    async def test_repeated_identical_write_appends_no_event(self, branch, event_store):
        node = await branch.create_node("Hi")
        await branch.update_node_response(node.node_id, "done")
        await branch.update_node_response(node.node_id, "done")
        events = await event_store.get_events(
            branch.conversation_id, "NodeResponseUpdated"
        )
        assert len(events) == 1

    async def test_unknown_node_returns_none(self, branch):
        assert await branch.update_node_response("ghost", "text") is None


class TestReload:
    async def test_load_activates_latest_leaf(self, db, branch):
        root = await branch.create_node("Hi")
        a = await branch.create_node("A", root.node_id)
        b = await branch.fork_from_node(a.node_id, "B")
        await branch.update_node_response(b.node_id, "reply")
        branch.switch_to_branch(a.node_id)

        reloaded = await make_branch_controller(db, branch.conversation_id)
        assert reloaded.active_node_id == b.node_id
        assert reloaded.store.get(b.node_id).assistant_response == "reply"
        assert len(reloaded.store) == 3
