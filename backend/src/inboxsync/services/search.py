"""In-thread message search with result navigation."""

import logging
from typing import Literal

from inbox_models import Message
from inboxsync.cancellation import RequestSlot
from inboxsync.errors import FetchSuperseded
from inboxsync.ports import InboxBackend
from inboxsync.stores.messages import MessageStore

logger = logging.getLogger(__name__)


class MessageSearch:
    """Search results for the open thread and a cursor over them.

    Navigating to a hit pages older history into the message store until the
    hit is loaded, so it can be scrolled to and highlighted.
    """

    def __init__(self, backend: InboxBackend, messages: MessageStore):
        self._backend = backend
        self._messages = messages
        self.query = ""
        self.thread_id: int | None = None
        self.results: list[Message] = []
        self.index = 0
        self.searching = False
        self._slot = RequestSlot("search")

    @property
    def current(self) -> Message | None:
        if not self.results:
            return None
        return self.results[self.index]

    def clear(self) -> None:
        self._slot.cancel()
        self.query = ""
        self.thread_id = None
        self.results = []
        self.index = 0
        self.searching = False

    async def search(self, thread_id: int, query: str) -> list[Message]:
        """Run a search; an empty query just clears.

        Raises BackendError if the search query fails.
        """
        if not query.strip():
            self.clear()
            return []

        self.query = query
        self.thread_id = thread_id
        self.searching = True
        try:
            results = await self._slot.run(
                lambda: self._backend.search_messages(thread_id, query.strip())
            )
        except FetchSuperseded:
            return []
        finally:
            # A newer search still in flight owns the flag
            if not self._slot.busy:
                self.searching = False

        if self.thread_id != thread_id or self.query != query:
            return []

        self.results = results
        self.index = 0
        if results:
            await self.ensure_loaded(results[0])
        return results

    async def navigate(self, direction: Literal["next", "prev"]) -> Message | None:
        if not self.results:
            return None
        count = len(self.results)
        if direction == "next":
            self.index = (self.index + 1) % count
        else:
            self.index = (self.index - 1) % count
        target = self.results[self.index]
        await self.ensure_loaded(target)
        return target

    async def ensure_loaded(self, target: Message) -> bool:
        """Page older history until target is loaded or history runs out."""
        store = self._messages
        while not store.contains(target.message_id):
            if store.thread_id != target.thread_id or not store.has_more:
                logger.debug(f"Search hit {target.message_id} is not in loaded history")
                return False
            if not await store.load_thread(target.thread_id, store.page + 1):
                return False
        return True
