"""
End-to-end tests for the FastAPI application.
Tests all API endpoints with a real test client and a scripted upstream.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from supportchat.config import Config
from supportchat.ids import generate_conversation_id
from supportchat.main import create_app

from helpers import completion_body

HEADERS = {"X-User-ID": "user-1"}


def _frames(body: str) -> list[dict]:
    """Parse an SSE response body into its JSON frames."""
    frames = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block:
            assert block.startswith("data: ")
            frames.append(json.loads(block[len("data: "):]))
    return frames


@pytest.fixture
def client(temp_db, relay):
    """Create a test client with an isolated store and upstream."""
    app = create_app(database=temp_db, relay=relay)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    """Tests for /health."""

    def test_health(self, client):
        """Test the shallow health check without identity headers."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] is True
        assert data["upstream"] is None

    def test_deep_health(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(200, json=completion_body("ok"))

        data = client.get("/health", params={"deep": "true"}).json()

        assert data["status"] == "healthy"
        assert data["upstream"] is True

    def test_deep_health_upstream_down(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(503, text="down")

        data = client.get("/health", params={"deep": "true"}).json()

        assert data["status"] == "degraded"
        assert data["upstream"] is False


class TestSend:
    """Tests for POST /chat/send."""

    def test_missing_user_header(self, client):
        response = client.post("/chat/send", json={"message": "Hello"})

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "UNAUTHORIZED"
        assert "X-User-ID" in body["error"]

    def test_stream(self, client):
        """Test the SSE frames and the persisted conversation."""
        response = client.post(
            "/chat/send", json={"message": "Hello", "stream": True}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        frames = _frames(response.text)
        assert frames[0]["type"] == "conversation"
        assert frames[0]["model"] == "test/model"
        assert frames[1:] == [
            {"type": "content", "content": "Hi"},
            {"type": "content", "content": " there"},
        ]

        conversation_id = frames[0]["conversationId"]
        data = client.get(f"/chat/{conversation_id}", headers=HEADERS).json()["data"]
        assert [(m["role"], m["content"]) for m in data["messages"]] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
        ]
        assert data["title"] == "Hello"

    def test_stream_rate_limited(self, client, upstream):
        """Test that a 429 upstream yields exactly one error frame."""
        upstream.handler = lambda request: httpx.Response(429, json={"error": {"message": "slow"}})
        conversation_id = generate_conversation_id()

        response = client.post(
            "/chat/send",
            json={"message": "Hello", "stream": True, "conversationId": conversation_id},
            headers=HEADERS,
        )

        assert _frames(response.text) == [
            {"type": "error", "error": "Rate limit exceeded. Please try again later."}
        ]
        data = client.get(f"/chat/{conversation_id}", headers=HEADERS).json()["data"]
        assert [m["role"] for m in data["messages"]] == ["user"]

    def test_non_stream(self, client, upstream, completion):
        upstream.handler = lambda request: httpx.Response(200, json=completion)

        response = client.post("/chat/send", json={"message": "Hello"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["message"] == "Hello! How can I help you today?"
        assert body["data"]["usage"] == {"promptTokens": 12, "completionTokens": 8, "totalTokens": 20}
        assert body["data"]["conversationId"].startswith("conv_")

    def test_non_stream_rate_limited(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(429, json={"error": {"message": "slow"}})

        response = client.post("/chat/send", json={"message": "Hello"}, headers=HEADERS)

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "error": "Rate limit exceeded. Please try again later.",
            "code": "RATE_LIMITED",
        }

    def test_invalid_conversation_id(self, client, upstream):
        """Test that a malformed id is rejected before any stream opens."""
        response = client.post(
            "/chat/send",
            json={"message": "Hello", "stream": True, "conversationId": "conv_nope"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_ID"
        assert upstream.requests == []

    def test_blank_message_opens_no_stream(self, client, upstream, temp_db):
        """Test that whitespace-only content is rejected and nothing is created."""
        response = client.post(
            "/chat/send", json={"message": "  \n\t ", "stream": True}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert upstream.requests == []
        with temp_db.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM conversations")
            assert cur.fetchone()[0] == 0

    @pytest.mark.parametrize("payload", [
        {"message": ""},
        {"message": "x" * (Config.MAX_MESSAGE_LENGTH + 1)},
        {},
    ])
    def test_invalid_message(self, client, payload):
        response = client.post("/chat/send", json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestConversations:
    """Tests for the conversation routes."""

    def _create(self, client) -> str:
        response = client.post("/chat/conversation", json={"model": "other/model"}, headers=HEADERS)
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["model"] == "other/model"
        assert data["title"] == "New Conversation"
        return data["id"]

    def test_get(self, client):
        conversation_id = self._create(client)

        response = client.get(f"/chat/{conversation_id}", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == conversation_id
        assert data["messages"] == []
        assert "createdAt" in data and "updatedAt" in data

    def test_get_unknown(self, client):
        response = client.get(f"/chat/{generate_conversation_id()}", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_get_invalid_id(self, client):
        response = client.get("/chat/not-an-id", headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_ID"

    def test_other_owner(self, client):
        conversation_id = self._create(client)

        response = client.get(f"/chat/{conversation_id}", headers={"X-User-ID": "user-2"})

        assert response.status_code == 404

    def test_rename(self, client):
        conversation_id = self._create(client)

        response = client.put(
            f"/chat/{conversation_id}/rename", json={"title": "Shipping"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Shipping"

    def test_rename_empty(self, client):
        conversation_id = self._create(client)

        response = client.put(f"/chat/{conversation_id}/rename", json={"title": ""}, headers=HEADERS)

        assert response.status_code == 400

    def test_clear(self, client):
        response = client.post("/chat/send", json={"message": "Hello", "stream": True}, headers=HEADERS)
        conversation_id = _frames(response.text)[0]["conversationId"]

        response = client.post(f"/chat/{conversation_id}/clear", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["messages"] == []

    def test_delete(self, client):
        conversation_id = self._create(client)

        response = client.delete(f"/chat/{conversation_id}", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get(f"/chat/{conversation_id}", headers=HEADERS).status_code == 404


class TestApiKey:
    """Tests for the optional shared API key."""

    def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(Config, "API_KEY", "secret")

        assert client.post("/chat/conversation", json={}, headers=HEADERS).status_code == 401
        assert client.post(
            "/chat/conversation", json={}, headers={**HEADERS, "X-API-Key": "wrong"}
        ).status_code == 403
        assert client.post(
            "/chat/conversation", json={}, headers={**HEADERS, "X-API-Key": "secret"}
        ).status_code == 201

    def test_health_is_public(self, client, monkeypatch):
        monkeypatch.setattr(Config, "API_KEY", "secret")

        assert client.get("/health").status_code == 200
