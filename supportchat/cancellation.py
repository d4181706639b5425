"""
Cooperative cancellation for stream consumers.
"""

import asyncio
from typing import AsyncIterator, Optional, TypeVar

T = TypeVar("T")


class CancellationToken:
    """Single cancellation signal shared between a controller and a stream.

    Usage:
        token = CancellationToken()

        # In the controller:
        token.cancel("user pressed stop")

        # In the consumer:
        async for event in iterate_until_cancelled(stream, token):
            ...
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Signal cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Block until cancellation is signalled."""
        await self._event.wait()


async def _next(source: AsyncIterator[T]) -> T:
    return await source.__anext__()


async def _settle(step: asyncio.Task) -> None:
    """Cancel a pending step and wait until it has finished."""
    if not step.done():
        step.cancel()
        await asyncio.wait({step})
    if not step.cancelled():
        # Mark the outcome as retrieved; it arrived too late to be used
        step.exception()


async def iterate_until_cancelled(
    source: AsyncIterator[T],
    cancel: Optional[CancellationToken],
) -> AsyncIterator[T]:
    """
    Yield items of ``source`` until it is exhausted or ``cancel`` fires.

    Each read of ``source`` races the token, so a stalled source stops as
    soon as cancellation is signalled. A read interrupted this way is
    cancelled inside ``source``, which then runs its own cleanup.
    """
    if cancel is None:
        async for item in source:
            yield item
        return

    waiter = asyncio.create_task(cancel.wait())
    step: Optional[asyncio.Task] = None
    try:
        while not cancel.is_cancelled:
            step = asyncio.create_task(_next(source))
            await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not step.done():
                return
            try:
                item = step.result()
            except StopAsyncIteration:
                return
            step = None
            yield item
    finally:
        if step is not None:
            await _settle(step)
        waiter.cancel()
