"""Supersession of in-flight fetches."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from inboxsync.errors import FetchSuperseded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestSlot:
    """Runs at most one live fetch per resource class.

    Starting a new fetch cancels the outstanding one. A fetch whose slot has
    moved on (cancelled, or finished after a newer fetch started) raises
    FetchSuperseded instead of returning, so callers never apply stale data.
    """

    def __init__(self, resource: str):
        self.resource = resource
        self._task: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        """Cancel the outstanding fetch, if any."""
        if self._task and not self._task.done():
            logger.debug(f"Cancelling in-flight {self.resource} fetch")
            self._task.cancel()
        self._task = None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        self.cancel()
        task = asyncio.ensure_future(factory())
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled() or self._task is not task:
            raise FetchSuperseded(self.resource)
        self._task = None
        return task.result()
