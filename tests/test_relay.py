"""
Tests for the upstream relay client.
"""

import json

import httpx
import pytest

from supportchat.config import DEFAULT_SYSTEM_PROMPT
from supportchat.errors import (
    AuthError,
    DecodeError,
    EmptyResponseError,
    RateLimitError,
    RelayError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)
from supportchat.models import ContentDelta, StreamError, TokenUsage
from supportchat.relay import RelayClient, chunk_to_event

from helpers import UPSTREAM_BASE_URL, collect, delta, sse_body, streaming_response

HISTORY = [{"role": "user", "content": "Hello"}]


class TestPrepareMessages:
    """Tests for request building."""

    def test_system_prompt_is_prepended(self, relay):
        """Test that the default instruction leads the history."""
        messages = relay.prepare_messages(HISTORY)

        assert messages[0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
        assert messages[1:] == HISTORY

    def test_existing_system_message_is_kept(self, relay):
        history = [{"role": "system", "content": "Be terse."}, *HISTORY]

        assert relay.prepare_messages(history) == history

    def test_build_request_defaults(self, relay):
        request = relay.build_request("test/model", HISTORY)

        assert request.temperature == 0.7
        assert request.max_tokens == 1000
        assert "stream" not in request.to_payload()

    def test_build_request_stream_flag(self, relay):
        request = relay.build_request("test/model", HISTORY, temperature=0.0, stream=True)

        payload = request.to_payload()
        assert payload["stream"] is True
        assert payload["temperature"] == 0.0

    @pytest.mark.parametrize("model, messages, max_tokens", [
        ("", HISTORY, None),
        ("   ", HISTORY, None),
        ("test/model", [], None),
        ("test/model", HISTORY, 0),
    ])
    def test_build_request_rejects_invalid_input(self, relay, model, messages, max_tokens):
        with pytest.raises(ValidationError):
            relay.build_request(model, messages, max_tokens=max_tokens)


class TestComplete:
    """Tests for non-streaming completions."""

    @pytest.mark.asyncio
    async def test_complete_success(self, relay, upstream, completion):
        """Test headers, payload and the parsed body."""
        upstream.handler = lambda request: httpx.Response(200, json=completion)

        result = await relay.complete("test/model", HISTORY)

        assert result == completion
        request = upstream.requests[0]
        assert str(request.url) == f"{UPSTREAM_BASE_URL}/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-key-123456"
        assert request.headers["HTTP-Referer"] == "http://localhost:3000"
        assert request.headers["X-Title"] == "Support Chat Tests"
        payload = json.loads(request.content)
        assert payload["model"] == "test/model"
        assert payload["messages"][0]["role"] == "system"
        assert payload["messages"][1:] == HISTORY
        assert "stream" not in payload

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error_class", [
        (401, AuthError),
        (429, RateLimitError),
        (500, UpstreamUnavailableError),
        (503, UpstreamUnavailableError),
        (400, RelayError),
    ])
    async def test_status_mapping(self, relay, upstream, status, error_class):
        upstream.handler = lambda request: httpx.Response(
            status, json={"error": {"message": "upstream says no"}}
        )

        with pytest.raises(error_class) as exc_info:
            await relay.complete("test/model", HISTORY)

        assert type(exc_info.value) is error_class
        assert f"({status})" in str(exc_info.value)
        assert "upstream says no" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_auth_error_hides_credential_problem(self, relay, upstream):
        upstream.handler = lambda request: httpx.Response(401, text="Invalid API key")

        with pytest.raises(AuthError) as exc_info:
            await relay.complete("test/model", HISTORY)

        assert "key" not in exc_info.value.public_message.lower()

    @pytest.mark.asyncio
    async def test_timeout(self, relay, upstream):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)
        upstream.handler = handler

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await relay.complete("test/model", HISTORY)

        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_connection_error(self, relay, upstream):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)
        upstream.handler = handler

        with pytest.raises(RelayError):
            await relay.complete("test/model", HISTORY)

    @pytest.mark.asyncio
    async def test_non_json_body(self, relay, upstream):
        upstream.handler = lambda request: httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(RelayError):
            await relay.complete("test/model", HISTORY)

    @pytest.mark.asyncio
    async def test_missing_api_key_never_calls_upstream(self, upstream):
        relay = RelayClient(
            base_url=UPSTREAM_BASE_URL,
            api_key="",
            transport=httpx.MockTransport(upstream),
        )

        with pytest.raises(AuthError):
            await relay.complete("test/model", HISTORY)

        assert upstream.requests == []
        await relay.close()


class TestExtract:
    """Tests for response extraction helpers."""

    def test_extract_content(self, completion):
        assert RelayClient.extract_content(completion) == "Hello! How can I help you today?"

    @pytest.mark.parametrize("response", [
        {},
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": ""}}]},
    ])
    def test_extract_content_empty(self, response):
        with pytest.raises(EmptyResponseError):
            RelayClient.extract_content(response)

    def test_extract_usage(self, completion):
        assert RelayClient.extract_usage(completion) == TokenUsage(prompt=12, completion=8, total=20)

    def test_extract_usage_absent(self):
        assert RelayClient.extract_usage({"choices": []}) is None


class TestChunkToEvent:
    """Tests for chunk_to_event."""

    def test_content(self):
        assert chunk_to_event(delta("Hi")) == ContentDelta(text="Hi")

    def test_error_object(self):
        assert chunk_to_event({"error": {"message": "boom"}}) == StreamError(message="boom")

    def test_error_string(self):
        assert chunk_to_event({"error": "boom"}) == StreamError(message="boom")

    @pytest.mark.parametrize("chunk", [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": ""}}]},
        {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        {"choices": []},
        {"choices": "nope"},
        {"usage": {"total_tokens": 3}},
    ])
    def test_nothing_for_client(self, chunk):
        assert chunk_to_event(chunk) is None


class TestStream:
    """Tests for streaming completions."""

    @pytest.mark.asyncio
    async def test_stream_success(self, relay, upstream):
        """Test that chunks arrive as events, in order."""
        upstream.handler = lambda request: streaming_response(
            [sse_body(delta("Hi"), delta(" there"))]
        )

        events = await collect(await relay.stream("test/model", HISTORY))

        assert events == [ContentDelta("Hi"), ContentDelta(" there")]
        payload = json.loads(upstream.requests[0].content)
        assert payload["stream"] is True

    @pytest.mark.asyncio
    async def test_status_error_raised_before_iteration(self, relay, upstream):
        """Test that a 429 surfaces from stream() itself."""
        upstream.handler = lambda request: httpx.Response(
            429, json={"error": {"message": "slow down"}}
        )

        with pytest.raises(RateLimitError):
            await relay.stream("test/model", HISTORY)

    @pytest.mark.asyncio
    async def test_broken_stream_raises_decode_error(self, relay, upstream):
        upstream.handler = lambda request: streaming_response(
            [sse_body(delta("Partial"), done=False)],
            error=httpx.ReadError("connection reset"),
        )

        stream = await relay.stream("test/model", HISTORY)
        first = await stream.__anext__()
        assert first == ContentDelta("Partial")

        with pytest.raises(DecodeError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_idle_timeout(self, relay, upstream):
        upstream.handler = lambda request: streaming_response(
            [], error=httpx.ReadTimeout("no data")
        )

        stream = await relay.stream("test/model", HISTORY)
        with pytest.raises(UpstreamTimeoutError):
            await collect(stream)


class TestCheckConnection:
    """Tests for check_connection."""

    @pytest.mark.asyncio
    async def test_reachable(self, relay, upstream, completion):
        upstream.handler = lambda request: httpx.Response(200, json=completion)

        assert await relay.check_connection() is True
        assert json.loads(upstream.requests[0].content)["max_tokens"] == 10

    @pytest.mark.asyncio
    async def test_unreachable(self, relay, upstream):
        upstream.handler = lambda request: httpx.Response(503, text="down")

        assert await relay.check_connection() is False
