"""Cancellation - cooperative cancel tokens and deadline-bounded awaits.

Invariants:
    - A CancelToken only ever moves from not-cancelled to cancelled
    - run_cancellable() cancels the inner task before raising, so no work outlives the call
    - Deadline expiry raises ModelTimeoutError; a token firing raises CallCancelledError

Design Decisions:
    - asyncio.Event over task.cancel() from the outside: callers in other tasks
      can signal without holding a task handle
    - One token may be shared by a stream and a whole agent loop
"""

import asyncio
from typing import Awaitable, TypeVar

from pi_runtime.core.errors import CallCancelledError, ModelTimeoutError

T = TypeVar("T")


class CancelToken:
    """Caller-owned cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    aw: Awaitable[T],
    timeout: float | None = None,
    token: CancelToken | None = None,
) -> T:
    """Await aw, bounded by an optional deadline and cancel token."""
    if token is not None and token.cancelled:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise CallCancelledError()

    task = asyncio.ensure_future(aw)
    waiters = {task}
    cancel_waiter = None
    if token is not None:
        cancel_waiter = asyncio.ensure_future(token.wait())
        waiters.add(cancel_waiter)
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_waiter is not None and cancel_waiter in done:
        raise CallCancelledError()
    raise ModelTimeoutError(timeout)
