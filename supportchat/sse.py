"""
Client-facing Server-Sent-Events framing.

Frames are ``data: <json>\\n\\n`` with a ``type`` discriminator:

* ``{"type": "conversation", "conversationId": ..., "model": ...}`` - first frame
* ``{"type": "content", "content": ...}`` - zero or more
* ``{"type": "error", "error": ...}`` - at most one, last

The stream has no end sentinel; the client treats connection close as the end.
"""

import json
import logging
from typing import AsyncIterable, AsyncIterator, Optional

from supportchat.models import ContentDelta, ConversationReady, StreamEnd, StreamError, StreamEvent

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Cache-Control",
}


def _frame(data: dict) -> str:
    """Format a dict as an SSE data frame."""
    return f"data: {json.dumps(data)}\n\n"


def encode_event(event: StreamEvent) -> Optional[str]:
    """Serialize one stream event. ``StreamEnd`` produces no frame."""
    if isinstance(event, ConversationReady):
        return _frame({
            "type": "conversation",
            "conversationId": event.conversation_id,
            "model": event.model,
        })
    if isinstance(event, ContentDelta):
        return _frame({"type": "content", "content": event.text})
    if isinstance(event, StreamError):
        return _frame({"type": "error", "error": event.message})
    if isinstance(event, StreamEnd):
        return None
    raise TypeError(f"Unknown stream event: {event!r}")


def decode_event(payload: dict) -> Optional[StreamEvent]:
    """Turn a decoded client-protocol frame back into a stream event."""
    kind = payload.get("type")
    if kind == "conversation":
        return ConversationReady(
            conversation_id=payload.get("conversationId", ""),
            model=payload.get("model", ""),
        )
    if kind == "content":
        return ContentDelta(text=payload.get("content", ""))
    if kind == "error":
        return StreamError(message=payload.get("error", ""))
    logger.warning("Unknown frame type: %r", kind)
    return None


async def encode_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
    """Frame every event of ``events`` until the source is exhausted."""
    async for event in events:
        frame = encode_event(event)
        if frame is not None:
            yield frame
