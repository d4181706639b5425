"""
Builders for upstream wire data used across the test modules.
"""

import asyncio
import json
from typing import AsyncIterator, Iterable

import httpx

UPSTREAM_BASE_URL = "https://upstream.test/api/v1"


def delta(text: str) -> dict:
    """An upstream streaming chunk carrying ``text``."""
    return {"id": "gen-1", "choices": [{"index": 0, "delta": {"content": text}}]}


def sse_body(*chunks: dict, done: bool = True) -> bytes:
    """Encode chunks the way the upstream frames them."""
    frames = [f"data: {json.dumps(chunk)}\n\n" for chunk in chunks]
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


def completion_body(content: str) -> dict:
    return {
        "id": "gen-1",
        "model": "test/model",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20},
    }


async def byte_stream(parts: Iterable[bytes], error: Exception = None) -> AsyncIterator[bytes]:
    """Yield ``parts`` one by one, then raise ``error`` if given."""
    for part in parts:
        yield part
    if error is not None:
        raise error


async def stalled_stream(first: bytes, rest: bytes, stall: float) -> AsyncIterator[bytes]:
    """Yield ``first``, go quiet for ``stall`` seconds, then yield ``rest``."""
    yield first
    await asyncio.sleep(stall)
    yield rest


def streaming_response(parts: Iterable[bytes], error: Exception = None) -> httpx.Response:
    return httpx.Response(
        200,
        content=byte_stream(parts, error),
        headers={"Content-Type": "text/event-stream"},
    )


async def async_iter(items):
    for item in items:
        yield item


async def collect(stream) -> list:
    return [item async for item in stream]
