"""
Incremental decoder for upstream Server-Sent-Events completion streams.

Upstream frames look like ``data: {...}\\n\\n`` and the stream ends with
``data: [DONE]``. Bytes may arrive split anywhere, including inside a
multi-byte UTF-8 character or inside the ``data:`` marker.
"""

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Optional

from supportchat.errors import DecodeError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class _Done(Exception):
    """Raised internally when the sentinel line is seen."""


def _parse_line(line: str) -> Optional[dict]:
    """
    Parse one complete line.

    Returns the decoded event, or None when the line carries nothing.

    Raises:
        _Done: On the ``[DONE]`` sentinel.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        if line:
            logger.debug("Ignoring non-data line: %.80s", line)
        return None

    data = line[len(DATA_PREFIX):].strip()
    if not data:
        return None
    if data == DONE_SENTINEL:
        raise _Done()

    try:
        event = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning("Skipping malformed stream chunk (%s): %.200s", e, data)
        return None

    if not isinstance(event, dict):
        logger.warning("Skipping non-object stream chunk: %.200s", data)
        return None
    return event


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[dict]:
    """
    Decode an upstream byte stream into parsed JSON events.

    Args:
        chunks: Raw bytes as read from the transport, in any split.

    Yields:
        One dict per ``data:`` line, in stream order. Malformed lines are
        logged and skipped.

    Raises:
        DecodeError: If the bytes are not valid UTF-8.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""

    try:
        async for chunk in chunks:
            if not chunk:
                continue
            try:
                buffer += decoder.decode(chunk)
            except UnicodeDecodeError as e:
                raise DecodeError(f"Invalid UTF-8 in upstream stream: {e}") from e

            lines = buffer.split("\n")
            # Keep the last, possibly incomplete line for the next read
            buffer = lines.pop()

            for line in lines:
                event = _parse_line(line)
                if event is not None:
                    yield event

        try:
            buffer += decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise DecodeError(f"Truncated UTF-8 at end of upstream stream: {e}") from e

        event = _parse_line(buffer)
        if event is not None:
            yield event
        logger.debug("Upstream stream ended without [DONE]")
    except _Done:
        logger.debug("Upstream stream completed with [DONE]")
