"""
Cancellation helper

Races a store or lookup coroutine against an optional caller-supplied
asyncio.Event so a request can be abandoned promptly.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .protocols import OperationCancelledError

T = TypeVar("T")


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel_event: Optional[asyncio.Event],
    operation: str,
) -> T:
    """
    Await `awaitable` unless `cancel_event` fires first.

    When the event is set the pending call is cancelled and
    OperationCancelledError is raised instead of returning a partial result.
    """
    if cancel_event is None:
        return await awaitable

    if cancel_event.is_set():
        # Never started; close the coroutine so it is not reported as un-awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        elif asyncio.isfuture(awaitable):
            awaitable.cancel()
        raise OperationCancelledError(operation)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()

    if work.cancelled() or not work.done():
        raise OperationCancelledError(operation)
    return work.result()
