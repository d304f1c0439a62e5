"""Conversation CRUD endpoints, plus health and provider listing."""

from tests.fixtures import create_conversation, send_message


class TestConversationCrud:
    async def test_create_with_defaults(self, client):
        body = await create_conversation(client)
        assert body["title"] == "New Chat"
        assert body["folder_id"] is None
        assert body["conversation_id"]

    async def test_create_with_title_and_folder(self, client):
        body = await create_conversation(client, title="Physics", folder_id="f1")
        assert (body["title"], body["folder_id"]) == ("Physics", "f1")

    async def test_list_newest_first(self, client):
        first = await create_conversation(client, title="one")
        second = await create_conversation(client, title="two")
        resp = await client.get("/api/conversations")
        ids = [c["conversation_id"] for c in resp.json()]
        assert ids == [second["conversation_id"], first["conversation_id"]]

    async def test_get_detail_of_empty_conversation(self, client):
        conv = await create_conversation(client)
        resp = await client.get(f"/api/conversations/{conv['conversation_id']}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["nodes"] == []
        assert body["active_node_id"] is None
        assert body["active_path"] == []
        assert body["branch_points"] == {}

    async def test_detail_includes_nodes(self, client):
        conv = await create_conversation(client)
        cid = conv["conversation_id"]
        sent = await send_message(client, cid, "Hi")
        body = (await client.get(f"/api/conversations/{cid}")).json()
        assert [n["node_id"] for n in body["nodes"]] == [sent["node"]["node_id"]]
        assert body["active_node_id"] == sent["node"]["node_id"]

    async def test_rename(self, client):
        conv = await create_conversation(client)
        cid = conv["conversation_id"]
        resp = await client.patch(f"/api/conversations/{cid}", json={"title": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert (await client.get(f"/api/conversations/{cid}")).json()["title"] == "Renamed"

    async def test_rename_rejects_empty_title(self, client):
        conv = await create_conversation(client)
        resp = await client.patch(
            f"/api/conversations/{conv['conversation_id']}", json={"title": ""}
        )
        assert resp.status_code == 422

    async def test_move_between_folders(self, client):
        conv = await create_conversation(client, folder_id="physics")
        cid = conv["conversation_id"]
        resp = await client.patch(f"/api/conversations/{cid}", json={"folder_id": "chemistry"})
        assert resp.status_code == 200
        assert resp.json()["folder_id"] == "chemistry"
        assert resp.json()["title"] == conv["title"]

        resp = await client.patch(f"/api/conversations/{cid}", json={"folder_id": None})
        assert resp.json()["folder_id"] is None
        assert (await client.get(f"/api/conversations/{cid}")).json()["folder_id"] is None

    async def test_rename_and_move_together(self, client):
        conv = await create_conversation(client)
        resp = await client.patch(
            f"/api/conversations/{conv['conversation_id']}",
            json={"title": "Notes", "folder_id": "f1"},
        )
        assert resp.json()["title"] == "Notes"
        assert resp.json()["folder_id"] == "f1"

    async def test_empty_patch_rejected(self, client):
        conv = await create_conversation(client)
        resp = await client.patch(f"/api/conversations/{conv['conversation_id']}", json={})
        assert resp.status_code == 400

    async def test_delete(self, client):
        conv = await create_conversation(client)
        cid = conv["conversation_id"]
        await send_message(client, cid, "Hi")
        resp = await client.delete(f"/api/conversations/{cid}")
        assert resp.status_code == 204
        assert (await client.get(f"/api/conversations/{cid}")).status_code == 404
        assert (await client.get("/api/conversations")).json() == []

    async def test_unknown_conversation_404s(self, client):
        assert (await client.get("/api/conversations/ghost")).status_code == 404
        assert (await client.delete("/api/conversations/ghost")).status_code == 404
        resp = await client.patch("/api/conversations/ghost", json={"title": "x"})
        assert resp.status_code == 404


class TestAppEndpoints:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_providers_lists_registered(self, client):
        resp = await client.get("/api/providers")
        assert resp.status_code == 200
        assert [p["name"] for p in resp.json()] == ["fake"]
