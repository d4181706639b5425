"""
Python consumer for the support chat HTTP API.

Example:
    async with ChatClient("http://localhost:5000", owner_id="user-1") as client:
        async for event in client.stream_message("Hello"):
            if isinstance(event, ContentDelta):
                print(event.text, end="")
"""

import logging
from typing import AsyncIterator, Optional

import httpx

from supportchat.cancellation import CancellationToken, iterate_until_cancelled
from supportchat.decoder import decode_stream
from supportchat.errors import ChatError, DecodeError, RelayError, UpstreamTimeoutError
from supportchat.models import ChatResult, StreamEvent, TokenUsage
from supportchat.sse import decode_event

logger = logging.getLogger(__name__)


class ChatClientError(ChatError):
    """The chat API answered with an error envelope."""
    code = "CLIENT_ERROR"

    def __init__(self, message: str, status_code: int, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        if code:
            self.code = code


def _raise_for_envelope(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or body.get("detail") or f"HTTP {response.status_code}"
    raise ChatClientError(str(message), response.status_code, body.get("code"))


class ChatClient:
    """Async client for ``/chat/send``."""

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        headers = {"X-User-ID": owner_id}
        if api_key:
            headers["X-API-Key"] = api_key
        self.owner_id = owner_id
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def stream_message(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a message and yield the reply as stream events.

        The iterator ends when the server closes the stream or when
        ``cancel`` is signalled; either way the HTTP response is closed.

        Raises:
            ChatClientError: If the request is rejected before streaming.
            DecodeError: If the stream bytes are not valid UTF-8.
        """
        payload = {"message": message, "stream": True}
        if conversation_id is not None:
            payload["conversationId"] = conversation_id
        if model is not None:
            payload["model"] = model

        request = self.client.build_request("POST", "/chat/send", json=payload)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Chat API timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RelayError(f"Chat API request failed: {e}") from e

        try:
            if not response.is_success:
                await response.aread()
                _raise_for_envelope(response)

            chunks = decode_stream(response.aiter_bytes())
            frames = iterate_until_cancelled(chunks, cancel)
            try:
                async for frame in frames:
                    event = decode_event(frame)
                    if event is not None:
                        yield event
                if cancel is not None and cancel.is_cancelled:
                    logger.info("Stream consumption cancelled: %s", cancel.reason)
            except httpx.HTTPError as e:
                raise DecodeError(f"Chat stream broke: {e}") from e
            finally:
                await frames.aclose()
                await chunks.aclose()
        finally:
            await response.aclose()

    async def send_message(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatResult:
        """Send a message and wait for the complete reply."""
        payload = {"message": message, "stream": False}
        if conversation_id is not None:
            payload["conversationId"] = conversation_id
        if model is not None:
            payload["model"] = model

        try:
            response = await self.client.post("/chat/send", json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Chat API timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RelayError(f"Chat API request failed: {e}") from e
        _raise_for_envelope(response)

        data = response.json()["data"]
        usage = data.get("usage")
        return ChatResult(
            message=data["message"],
            conversation_id=data["conversationId"],
            model=data["model"],
            usage=TokenUsage(
                prompt=usage.get("promptTokens", 0),
                completion=usage.get("completionTokens", 0),
                total=usage.get("totalTokens", 0),
            ) if usage else None,
        )
