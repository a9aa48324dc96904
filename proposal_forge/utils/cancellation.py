"""
Cooperative cancellation for in-flight generations.

A token is created by the caller, passed down through the orchestrator and
checked at every suspension point. ``guard`` races an awaitable against the
token so that cancelling also cancels the underlying network task.
"""

import asyncio
from typing import Any, Awaitable, Optional

from ..errors import GenerationCancelledError


class CancellationToken:
    """Caller-owned flag that aborts the pipeline at its next await."""

    def __init__(self):
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self.reason = "Generation cancelled by caller"

    def _get_event(self) -> asyncio.Event:
        # Created lazily so the event binds to the loop that awaits it
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation. Safe to call more than once."""
        if reason:
            self.reason = reason
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelledError(self.reason)

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await ``awaitable`` unless the token fires first.

        On cancellation the wrapped task is cancelled and awaited before
        GenerationCancelledError is raised, so an aiohttp request inside it
        is aborted rather than left running.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if not self._cancelled:
            waiter.cancel()
            return task.result()

        waiter.cancel()
        task.cancel()
        # Collect the aborted task without re-raising its CancelledError
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelledError(self.reason)

    async def sleep(self, delay: float) -> None:
        """Sleep that wakes up early with GenerationCancelledError."""
        await self.guard(asyncio.sleep(delay))


async def run_cancellable(awaitable: Awaitable[Any], cancel_token: Optional[CancellationToken]) -> Any:
    """Await with a token when one is given."""
    if cancel_token is None:
        return await awaitable
    return await cancel_token.guard(awaitable)
