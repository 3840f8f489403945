"""
Integration tests for the conversation endpoints.

Requests go through the full FastAPI stack against a per-test SQLite
database, identified by the ``session-id`` header.
"""

import pytest
from httpx import AsyncClient


class TestConversationEndpoints:
    """Test the conversation REST surface."""

    @pytest.mark.asyncio
    async def test_create_conversation(self, async_client: AsyncClient, session_header):
        # Act: Create with an explicit title
        response = await async_client.post("/api/conversations", json={"title": "Trip"}, headers=session_header)

        # Assert: Wrapped conversation with ISO timestamps
        assert response.status_code == 201
        conversation = response.json()["conversation"]
        assert conversation["title"] == "Trip"
        assert set(conversation) == {"id", "title", "created_at", "updated_at"}

    @pytest.mark.asyncio
    async def test_create_conversation_default_title(self, async_client: AsyncClient, session_header):
        response = await async_client.post("/api/conversations", json={}, headers=session_header)

        assert response.status_code == 201
        assert response.json()["conversation"]["title"] == "New Chat"

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_session(self, async_client: AsyncClient):
        await async_client.post("/api/conversations", json={"title": "mine"}, headers={"session-id": "alice"})

        alice = await async_client.get("/api/conversations", headers={"session-id": "alice"})
        bob = await async_client.get("/api/conversations", headers={"session-id": "bob"})

        assert [c["title"] for c in alice.json()["conversations"]] == ["mine"]
        assert bob.json()["conversations"] == []

    @pytest.mark.asyncio
    async def test_missing_header_shares_anonymous_history(self, async_client: AsyncClient):
        await async_client.post("/api/conversations", json={"title": "shared"})

        response = await async_client.get("/api/conversations")

        assert [c["title"] for c in response.json()["conversations"]] == ["shared"]

    @pytest.mark.asyncio
    async def test_list_ordered_by_recent_activity(self, async_client: AsyncClient, session_header):
        first = (await async_client.post("/api/conversations", json={"title": "first"}, headers=session_header)).json()
        await async_client.post("/api/conversations", json={"title": "second"}, headers=session_header)
        await async_client.post(
            f"/api/conversations/{first['conversation']['id']}/messages",
            json={"role": "user", "content": "bump"},
            headers=session_header
        )

        response = await async_client.get("/api/conversations", headers=session_header)

        assert [c["title"] for c in response.json()["conversations"]] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_append_and_list_messages(self, async_client: AsyncClient, session_header):
        created = await async_client.post("/api/conversations", json={}, headers=session_header)
        conversation_id = created.json()["conversation"]["id"]
        images = [{
            "id": "img-1",
            "content": "data:image/png;base64,iVBORw0KGgo=",
            "filename": "paste.png",
            "size": 12,
        }]

        user = await async_client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"role": "user", "content": "what is this?", "images": images},
            headers=session_header
        )
        assistant = await async_client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"role": "assistant", "content": "A tiny PNG."},
            headers=session_header
        )
        listed = await async_client.get(f"/api/conversations/{conversation_id}/messages", headers=session_header)

        assert user.status_code == 201
        assert assistant.status_code == 201
        messages = listed.json()["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "what is this?"), ("assistant", "A tiny PNG.")
        ]
        assert messages[0]["images"] == images
        assert messages[1]["images"] is None
        assert messages[0]["conversation_id"] == conversation_id

    @pytest.mark.asyncio
    async def test_image_without_id_or_size_accepted(self, async_client: AsyncClient, session_header):
        created = await async_client.post("/api/conversations", json={}, headers=session_header)
        conversation_id = created.json()["conversation"]["id"]

        response = await async_client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={
                "role": "user",
                "content": "see attached",
                "images": [{"content": "data:image/png;base64,iVBORw0KGgo=", "filename": "a.png"}],
            },
            headers=session_header
        )

        assert response.status_code == 201
        image = response.json()["message"]["images"][0]
        assert image["content"] == "data:image/png;base64,iVBORw0KGgo="
        assert image["filename"] == "a.png"

    @pytest.mark.asyncio
    async def test_invalid_role_rejected(self, async_client: AsyncClient, session_header):
        created = await async_client.post("/api/conversations", json={}, headers=session_header)
        conversation_id = created.json()["conversation"]["id"]

        response = await async_client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"role": "system", "content": "x"},
            headers=session_header
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rename_conversation(self, async_client: AsyncClient, session_header):
        created = (await async_client.post("/api/conversations", json={}, headers=session_header)).json()
        conversation_id = created["conversation"]["id"]

        response = await async_client.put(
            f"/api/conversations/{conversation_id}", json={"title": "Renamed"}, headers=session_header
        )

        assert response.status_code == 200
        renamed = response.json()["conversation"]
        assert renamed["title"] == "Renamed"
        assert renamed["updated_at"] >= created["conversation"]["updated_at"]

    @pytest.mark.asyncio
    async def test_blank_rename_rejected(self, async_client: AsyncClient, session_header):
        created = await async_client.post("/api/conversations", json={}, headers=session_header)
        conversation_id = created.json()["conversation"]["id"]

        response = await async_client.put(
            f"/api/conversations/{conversation_id}", json={"title": "   "}, headers=session_header
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_404(self, async_client: AsyncClient, session_header):
        response = await async_client.get("/api/conversations/999/messages", headers=session_header)

        assert response.status_code == 404
        assert response.json() == {"detail": "Conversation 999 not found"}

    @pytest.mark.asyncio
    async def test_other_sessions_conversation_is_404(self, async_client: AsyncClient):
        created = await async_client.post("/api/conversations", json={}, headers={"session-id": "owner"})
        conversation_id = created.json()["conversation"]["id"]
        intruder = {"session-id": "intruder"}

        read = await async_client.get(f"/api/conversations/{conversation_id}/messages", headers=intruder)
        write = await async_client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"role": "user", "content": "hi"},
            headers=intruder
        )
        rename = await async_client.put(
            f"/api/conversations/{conversation_id}", json={"title": "mine now"}, headers=intruder
        )

        assert [read.status_code, write.status_code, rename.status_code] == [404, 404, 404]
