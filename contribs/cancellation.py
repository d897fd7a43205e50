"""
contribs/cancellation.py — Cooperative cancellation signal.

A CancellationSignal is handed down through every layer of a request. Any
await that may block (subprocess exit, HTTP response, backoff delay) is raced
against it with cancellable(); when the signal fires the inner awaitable is
cancelled and CancellationError is raised in its place.

Native task cancellation (asyncio.CancelledError) is honoured as well; the two
are treated identically by callers that need to clean up.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from contribs.errors import CancellationError

T = TypeVar("T")

CANCELLED = (CancellationError, asyncio.CancelledError)
# Tuple for ``except CANCELLED:`` clauses that must re-raise untouched.


class CancellationSignal:
    """A one-shot, level-triggered cancellation flag."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError()

    async def wait(self) -> None:
        await self._event.wait()


def raise_if_cancelled(signal: Optional[CancellationSignal]) -> None:
    if signal is not None:
        signal.raise_if_cancelled()


async def cancellable(awaitable: Awaitable[T], signal: Optional[CancellationSignal]) -> T:
    """Await *awaitable* unless *signal* fires first.

    On cancellation the awaitable's task is cancelled and awaited before
    CancellationError is raised, so resources it holds are released.
    """
    if signal is None:
        return await awaitable
    if signal.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancellationError()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        await asyncio.gather(task, waiter, return_exceptions=True)
        raise

    if task in done:
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise CancellationError()


async def sleep(seconds: float, signal: Optional[CancellationSignal]) -> None:
    """asyncio.sleep() that wakes early with CancellationError."""
    if seconds <= 0:
        raise_if_cancelled(signal)
        return
    await cancellable(asyncio.sleep(seconds), signal)
