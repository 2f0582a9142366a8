"""Thread list state: pagination, previews, read state and ordering."""

import logging
from datetime import datetime, timezone
from enum import Enum

from inbox_models import LatestMessage, Message, Thread, sort_by_activity
from inboxsync.cancellation import RequestSlot
from inboxsync.config import settings
from inboxsync.errors import BackendError, FetchSuperseded
from inboxsync.ports import InboxBackend
from inboxsync.services.contacts import ContactDirectory

logger = logging.getLogger(__name__)


class ThreadFilter(str, Enum):
    ALL = "all"
    UNREAD = "unread"


class ThreadOrder(str, Enum):
    RECENT = "recent"
    OLDEST = "oldest"


class ThreadStore:
    """Paginated thread list kept sorted by most recent activity."""

    def __init__(self, backend: InboxBackend, page_size: int | None = None):
        self._backend = backend
        self.page_size = page_size or settings.threads_page_size
        self.threads: list[Thread] = []
        self.selected_thread_id: int | None = None
        self.page = 0
        self.has_more = True
        self.loading = False
        self.error: str | None = None
        self._slot = RequestSlot("threads")

    def get(self, thread_id: int) -> Thread | None:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        return None

    @property
    def selected(self) -> Thread | None:
        if self.selected_thread_id is None:
            return None
        return self.get(self.selected_thread_id)

    async def load_page(self, page: int = 0) -> bool:
        """Fetch one page of threads.

        Page 0 replaces the list, later pages append. Returns False when the
        fetch was superseded by a newer one; nothing is changed in that case.
        Raises BackendError if both the preview procedure and the plain
        fallback fail.
        """
        offset = page * self.page_size
        self.loading = True
        try:
            fetched = await self._slot.run(lambda: self._fetch(offset))
        except FetchSuperseded:
            logger.debug(f"Thread page {page} fetch was cancelled")
            return False
        except BackendError as e:
            self.error = str(e)
            self.loading = False
            raise

        if page == 0:
            threads = fetched
        else:
            known = {t.id for t in self.threads}
            threads = self.threads + [t for t in fetched if t.id not in known]

        self.threads = sort_by_activity(threads)
        self.has_more = len(fetched) == self.page_size
        self.page = page
        self.error = None
        self.loading = False
        return True

    async def _fetch(self, offset: int) -> list[Thread]:
        try:
            rows = await self._backend.get_threads_with_latest_messages(offset, self.page_size)
            return [row.to_thread() for row in rows]
        except BackendError as e:
            logger.warning(f"Preview procedure failed, falling back to basic thread fetch: {e}")
        return await self._backend.list_threads(offset, self.page_size)

    def apply_incoming(self, message: Message) -> bool:
        """Fold a newly observed message into its thread's preview.

        Safe under duplicate and out-of-order delivery: a preview is only
        replaced by a message at least as recent. Returns True if the list
        changed.
        """
        thread = self.get(message.thread_id)
        if thread is None:
            return False

        latest = thread.latest_message
        if latest is not None and latest.created_at > message.created_at:
            return False
        preview = message.preview()
        if latest == preview and thread.updated_at >= message.created_at:
            return False

        thread.latest_message = preview
        thread.updated_at = max(thread.updated_at, message.created_at)
        self.threads = sort_by_activity(self.threads)
        return True

    def snapshot_preview(self, thread_id: int) -> tuple[LatestMessage | None, datetime] | None:
        thread = self.get(thread_id)
        if thread is None:
            return None
        return thread.latest_message, thread.updated_at

    def revert_preview(
        self,
        thread_id: int,
        snapshot: tuple[LatestMessage | None, datetime] | None,
        optimistic: Message,
    ) -> None:
        """Undo an optimistic preview if nothing newer has replaced it."""
        thread = self.get(thread_id)
        if thread is None or snapshot is None:
            return
        if thread.latest_message != optimistic.preview():
            return
        thread.latest_message, thread.updated_at = snapshot
        self.threads = sort_by_activity(self.threads)

    async def mark_read(self, thread_id: int) -> None:
        """Mark a thread read locally, then persist it on a best-effort basis."""
        thread = self.get(thread_id)
        if thread is not None:
            thread.last_read_at = datetime.now(timezone.utc)
        try:
            await self._backend.mark_thread_as_read(thread_id)
        except BackendError as e:
            logger.error(f"Error marking thread {thread_id} as read: {e}")

    def unread_count(self) -> int:
        return sum(1 for thread in self.threads if thread.is_unread)

    def visible(
        self,
        query: str = "",
        thread_filter: ThreadFilter = ThreadFilter.ALL,
        order: ThreadOrder = ThreadOrder.RECENT,
        contacts: ContactDirectory | None = None,
    ) -> list[Thread]:
        """Threads as shown in the sidebar after search, filter and ordering."""
        needle = query.strip().lower()
        result = [t for t in self.threads if _matches(t, needle, contacts)]
        if thread_filter == ThreadFilter.UNREAD:
            result = [t for t in result if t.is_unread]
        return sort_by_activity(result, newest_first=order == ThreadOrder.RECENT)


def _matches(thread: Thread, needle: str, contacts: ContactDirectory | None) -> bool:
    if not needle:
        return True
    if needle in thread.group_id.lower():
        return True
    if thread.name and needle in thread.name.lower():
        return True
    for participant in thread.participants:
        if needle in participant:
            return True
        if contacts:
            name = contacts.name_for(participant)
            if name and needle in name.lower():
                return True
    if thread.latest_message and needle in thread.latest_message.text.lower():
        return True
    return False
