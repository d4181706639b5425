"""
Upstream relay client.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint (OpenRouter by
default), either as one request/response exchange or as a streamed
Server-Sent-Events exchange decoded by :mod:`supportchat.decoder`.
"""

import json
import logging
from typing import AsyncIterator, Optional

import httpx

from supportchat.config import DEFAULT_SYSTEM_PROMPT
from supportchat.decoder import decode_stream
from supportchat.errors import (
    AuthError,
    DecodeError,
    EmptyResponseError,
    RelayError,
    UpstreamTimeoutError,
    ValidationError,
    error_for_status,
)
from supportchat.models import ContentDelta, RelayRequest, StreamError, StreamEvent, TokenUsage

logger = logging.getLogger(__name__)


def _error_detail(body: str) -> str:
    """Pull a readable message out of an upstream error body."""
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body[:500]

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return json.dumps(parsed)[:500]


def chunk_to_event(chunk: dict) -> Optional[StreamEvent]:
    """
    Convert one decoded upstream chunk into a stream event.

    Returns None for chunks that carry nothing for the client
    (role-only deltas, finish markers, unexpected shapes).
    """
    error = chunk.get("error")
    if error:
        if isinstance(error, dict):
            message = error.get("message") or "Upstream reported an error"
        else:
            message = str(error)
        return StreamError(message=str(message))

    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return ContentDelta(text=content)
    return None


class RelayClient:
    """Client for the upstream completion provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        app_url: str = "",
        app_title: str = "Support Chat",
        default_model: str = "meta-llama/llama-3.3-70b-instruct:free",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: float = 60.0,
        stream_idle_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.app_url = app_url
        self.app_title = app_title
        self.default_model = default_model
        self.default_temperature = temperature
        self.default_max_tokens = max_tokens
        self.timeout = timeout
        self.stream_idle_timeout = stream_idle_timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

        logger.info(
            "Relay client initialized: base_url=%s, api_key=%s",
            self.base_url,
            f"{api_key[:8]}... ({len(api_key)} chars)" if api_key else "NOT_SET",
        )

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def prepare_messages(self, messages: list[dict[str, str]]) -> list[dict[str, str]]:
        """Prepend the default system prompt unless one is already present."""
        if any(msg.get("role") == "system" for msg in messages):
            return list(messages)
        return [{"role": "system", "content": DEFAULT_SYSTEM_PROMPT}, *messages]

    def build_request(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stream: bool = False,
    ) -> RelayRequest:
        if not isinstance(model, str) or not model.strip():
            raise ValidationError("Model identifier must be a non-empty string")
        if not messages:
            raise ValidationError("At least one message is required")
        if max_tokens is not None and max_tokens < 1:
            raise ValidationError(f"max_tokens must be positive, got {max_tokens}")

        return RelayRequest(
            model=model,
            messages=self.prepare_messages(messages),
            temperature=self.default_temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.default_max_tokens,
            stream=stream,
        )

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthError("Upstream API key is not set")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.app_url,
            "X-Title": self.app_title,
        }

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict:
        """
        Send a non-streaming completion request.

        Returns:
            The parsed completion object.

        Raises:
            AuthError, RateLimitError, UpstreamUnavailableError,
            UpstreamTimeoutError, RelayError: Per the upstream failure.
        """
        request = self.build_request(model, messages, temperature, max_tokens)
        headers = self._headers()

        logger.info(
            "Sending completion request: model=%s, messages=%d, temperature=%s, max_tokens=%d",
            request.model, len(request.messages), request.temperature, request.max_tokens,
        )

        try:
            response = await self.client.post(
                self.completions_url,
                json=request.to_payload(),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Upstream request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RelayError(f"Upstream request failed: {e}") from e

        if not response.is_success:
            detail = _error_detail(response.text)
            logger.error("Upstream error: status=%d, detail=%s", response.status_code, detail)
            raise error_for_status(response.status_code, detail)

        try:
            data = response.json()
        except ValueError as e:
            raise RelayError("Upstream returned a non-JSON body") from e

        logger.info(
            "Received completion: model=%s, usage=%s",
            request.model, data.get("usage") if isinstance(data, dict) else None,
        )
        return data

    async def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Open a streaming completion.

        The HTTP exchange is established before this returns, so any
        status-level failure is raised here and never reaches the caller's
        iteration.

        Returns:
            An async iterator of ``ContentDelta`` and ``StreamError`` events.
            Closing it closes the upstream response.
        """
        request = self.build_request(model, messages, temperature, max_tokens, stream=True)
        http_request = self.client.build_request(
            "POST",
            self.completions_url,
            json=request.to_payload(),
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout, read=self.stream_idle_timeout),
        )

        logger.info(
            "Starting streaming request: model=%s, messages=%d",
            request.model, len(request.messages),
        )

        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Upstream connection timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RelayError(f"Upstream connection failed: {e}") from e

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            detail = _error_detail(body.decode("utf-8", errors="replace"))
            logger.error("Upstream streaming error: status=%d, detail=%s", response.status_code, detail)
            raise error_for_status(response.status_code, detail)

        logger.info("Streaming connection established: model=%s", request.model)
        return self._iter_events(response)

    async def _iter_events(self, response: httpx.Response) -> AsyncIterator[StreamEvent]:
        chunks = decode_stream(response.aiter_bytes())
        try:
            async for chunk in chunks:
                event = chunk_to_event(chunk)
                if event is None:
                    logger.debug("Skipping chunk without content: %.200s", chunk)
                    continue
                yield event
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"No data from upstream for {self.stream_idle_timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise DecodeError(f"Upstream stream broke: {e}") from e
        finally:
            await chunks.aclose()
            await response.aclose()

    @staticmethod
    def extract_content(response: dict) -> str:
        """Return the first choice's message text."""
        choices = response.get("choices") if isinstance(response, dict) else None
        if not choices:
            raise EmptyResponseError("No response choices received from upstream")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            raise EmptyResponseError("No content in upstream response")
        return content

    @staticmethod
    def extract_usage(response: dict) -> Optional[TokenUsage]:
        """Return normalized token usage, or None when upstream sent none."""
        usage = response.get("usage") if isinstance(response, dict) else None
        if not usage:
            return None
        return TokenUsage(
            prompt=usage.get("prompt_tokens") or 0,
            completion=usage.get("completion_tokens") or 0,
            total=usage.get("total_tokens") or 0,
        )

    async def check_connection(self) -> bool:
        """Send a tiny completion to verify the upstream is reachable."""
        try:
            await self.complete(
                self.default_model,
                [{"role": "user", "content": "Hello"}],
                max_tokens=10,
            )
            return True
        except RelayError as e:
            logger.error("Upstream connection test failed: %s", e)
            return False

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
