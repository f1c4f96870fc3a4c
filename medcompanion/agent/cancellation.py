"""
Turn Cancellation
=================

A "stop generating" request has to interrupt whatever the turn is waiting
on: the next stream chunk or a tool call. Every such await goes through
CancelToken.race(), which resolves with the awaited value or raises
TurnCancelled as soon as the token is set.

Example:
    token = CancelToken()
    try:
        chunk = await token.race(next_chunk())
    except TurnCancelled:
        ...  # finish with what has accumulated

    # elsewhere, e.g. from the /medcompanion stop command
    token.cancel()
"""

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class TurnCancelled(Exception):
    """The turn was stopped through its CancelToken."""


class CancelToken:
    """One-shot cancellation signal for a single turn."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        Raises:
            TurnCancelled: If the token was set before the awaitable finished
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise TurnCancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        raise TurnCancelled()
