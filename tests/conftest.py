"""
Pytest configuration and shared fixtures for support chat relay tests.
"""

import tempfile
import shutil
from pathlib import Path
from typing import Generator

import httpx
import pytest

from supportchat.db import Database
from supportchat.relay import RelayClient
from supportchat.services.chat_service import ChatService
from supportchat.services.conversation_service import ConversationService

from helpers import UPSTREAM_BASE_URL, completion_body, sse_body, delta


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database for tests."""
    db_path = temp_dir / "test.db"
    database = Database(db_path)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def conversation_service(temp_db: Database) -> ConversationService:
    return ConversationService(temp_db, default_model="test/model")


@pytest.fixture
def upstream():
    """
    Scriptable upstream. Set ``upstream.handler`` to a function taking an
    ``httpx.Request`` and returning an ``httpx.Response``; every request
    seen is kept in ``upstream.requests``.
    """
    class Upstream:
        def __init__(self):
            self.requests: list[httpx.Request] = []
            self.handler = lambda request: httpx.Response(
                200,
                content=sse_body(delta("Hi"), delta(" there")),
                headers={"Content-Type": "text/event-stream"},
            )

        async def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

    return Upstream()


@pytest.fixture
def relay(upstream) -> RelayClient:
    """Relay client talking to the scripted upstream."""
    return RelayClient(
        base_url=UPSTREAM_BASE_URL,
        api_key="sk-test-key-123456",
        app_url="http://localhost:3000",
        app_title="Support Chat Tests",
        default_model="test/model",
        transport=httpx.MockTransport(upstream),
    )


@pytest.fixture
def chat_service(conversation_service: ConversationService, relay: RelayClient) -> ChatService:
    return ChatService(conversation_service, relay, temperature=0.7, max_tokens=1000)


@pytest.fixture
def completion() -> dict:
    """A non-streaming completion with usage."""
    return completion_body("Hello! How can I help you today?")
