"""Message history of the open thread, including unconfirmed local sends."""

import bisect
import itertools
import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from inbox_models import TEMP_ID_PREFIX, Attachment, Direction, Message, TeamMember
from inboxsync.cancellation import RequestSlot
from inboxsync.config import settings
from inboxsync.errors import BackendError, FetchSuperseded
from inboxsync.ports import InboxBackend

logger = logging.getLogger(__name__)

# Negative ids keep optimistic entries clear of server-assigned ones
_temp_ids = itertools.count(1)

# Server clocks may trail the local one when stamping a confirmed send
CONFIRMATION_SKEW = timedelta(minutes=1)


class MergeOutcome(str, Enum):
    """What append_incoming did with a message."""

    IGNORED = "ignored"  # Belongs to another thread
    DUPLICATE = "duplicate"
    REPLACED = "replaced"  # Confirmed an optimistic entry
    APPENDED = "appended"


class MessageStore:
    """Ascending message list for the currently open thread."""

    def __init__(self, backend: InboxBackend, page_size: int | None = None):
        self._backend = backend
        self.page_size = page_size or settings.messages_page_size
        self.messages: list[Message] = []
        self.thread_id: int | None = None
        self.page = 0
        self.has_more = True
        self.loading = False
        self._slot = RequestSlot("messages")

    def contains(self, message_id: str) -> bool:
        return self._index_of(message_id) is not None

    def pending(self) -> list[Message]:
        """Optimistic entries still waiting for confirmation."""
        return [m for m in self.messages if m.is_optimistic]

    def _index_of(self, message_id: str) -> int | None:
        for i, message in enumerate(self.messages):
            if message.message_id == message_id:
                return i
        return None

    def reset(self) -> None:
        self._slot.cancel()
        self.messages = []
        self.thread_id = None
        self.page = 0
        self.has_more = True
        self.loading = False

    async def load_thread(self, thread_id: int, page: int = 0) -> bool:
        """Load one page of history, newest pages first.

        Page 0 replaces the list; later pages are prepended as older history.
        Returns False if the fetch was superseded or no longer matches the
        open thread.
        """
        if page == 0 and thread_id != self.thread_id:
            # Switching threads: anything on screen belongs to the old one
            self.messages = []
            self.thread_id = thread_id
            self.has_more = True
        self.loading = True
        offset = page * self.page_size
        try:
            batch, fetched_count = await self._slot.run(
                lambda: self._fetch(thread_id, offset)
            )
        except FetchSuperseded:
            logger.debug(f"Message fetch for thread {thread_id} page {page} was cancelled")
            return False
        except BackendError:
            self.loading = False
            raise

        if thread_id != self.thread_id:
            logger.debug(f"Discarding messages for thread {thread_id}, thread {self.thread_id} is open")
            return False

        if page == 0:
            self.messages = batch + self._live_entries(batch)
        else:
            known = {m.message_id for m in self.messages}
            self.messages = [m for m in batch if m.message_id not in known] + self.messages

        self.has_more = fetched_count == self.page_size
        self.page = page
        self.loading = False
        return True

    def _live_entries(self, batch: list[Message]) -> list[Message]:
        """Entries of the open thread that a page-0 reload must not drop.

        Realtime arrivals newer than the batch and optimistic sends that the
        batch does not already confirm.
        """
        fetched_ids = {m.message_id for m in batch}
        newest = batch[-1].created_at if batch else None
        kept = []
        for m in self.messages:
            if m.thread_id != self.thread_id or m.message_id in fetched_ids:
                continue
            if m.is_optimistic:
                if not _confirmed_by(batch, m):
                    kept.append(m)
            elif newest is None or m.created_at > newest:
                kept.append(m)
        return kept

    async def _fetch(self, thread_id: int, offset: int) -> tuple[list[Message], int]:
        newest_first = await self._backend.get_messages(thread_id, offset, self.page_size)

        attachments: dict[int, list[Attachment]] = {}
        ids = [m.id for m in newest_first]
        if ids:
            try:
                for row in await self._backend.get_attachments(ids):
                    attachments.setdefault(row.message_id, []).append(
                        Attachment(id=row.id, url=row.url)
                    )
            except BackendError as e:
                logger.error(f"Error fetching attachments for messages: {e}")

        ascending = [
            m.model_copy(update={"attachments": attachments.get(m.id, [])})
            for m in reversed(newest_first)
        ]
        return ascending, len(newest_first)

    async def fetch_message(self, id: int) -> Message | None:
        """Read one message row, for change events that arrive without it."""
        return await self._backend.get_message(id)

    def append_incoming(self, message: Message) -> MergeOutcome:
        """Merge a server-confirmed message into the open thread.

        Deduplicates by message_id, confirms a matching optimistic entry, or
        inserts by created_at so late deliveries keep the list ascending.
        """
        if self.thread_id is None or message.thread_id != self.thread_id:
            return MergeOutcome.IGNORED
        if self.contains(message.message_id):
            return MergeOutcome.DUPLICATE

        index = self._find_optimistic_match(message)
        if index is not None:
            logger.debug(f"Confirmed optimistic {self.messages[index].message_id} as {message.message_id}")
            del self.messages[index]
            self._insert(message)
            return MergeOutcome.REPLACED

        self._insert(message)
        return MergeOutcome.APPENDED

    def _insert(self, message: Message) -> None:
        if not self.messages or self.messages[-1].created_at <= message.created_at:
            self.messages.append(message)
            return
        bisect.insort(self.messages, message, key=lambda m: m.created_at)

    def _find_optimistic_match(self, message: Message) -> int | None:
        if message.direction != Direction.OUTBOUND:
            return None
        candidates = [
            (i, m)
            for i, m in enumerate(self.messages)
            if m.is_optimistic and m.thread_id == message.thread_id
        ]
        if message.client_ref:
            for i, m in candidates:
                if m.client_ref == message.client_ref:
                    return i
            return None
        # No correlation key echoed back: oldest entry with the same text
        for i, m in candidates:
            if m.text == message.text:
                return i
        return None

    def send_optimistic(
        self,
        thread_id: int,
        content: str,
        sender: TeamMember,
        client_ref: str | None = None,
    ) -> Message:
        """Show an outbound message before the server confirms it.

        The returned message is the handle for remove() if the send fails.
        Nothing is appended when another thread is open.
        """
        message = Message(
            id=-next(_temp_ids),
            message_id=f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            thread_id=thread_id,
            direction=Direction.OUTBOUND,
            text=content,
            sender_phone_number="team",
            sender_name=sender.full_name,
            created_at=datetime.now(timezone.utc),
            sent_by_team_member_id=sender.id,
            sent_by_team_member=sender,
            client_ref=client_ref,
        )
        if thread_id == self.thread_id:
            self.messages.append(message)
        return message

    def remove(self, message_id: str) -> bool:
        index = self._index_of(message_id)
        if index is None:
            return False
        del self.messages[index]
        return True


def _confirmed_by(batch: list[Message], optimistic: Message) -> bool:
    for m in batch:
        if m.direction != Direction.OUTBOUND:
            continue
        if optimistic.client_ref and m.client_ref == optimistic.client_ref:
            return True
        if m.text == optimistic.text and m.created_at >= optimistic.created_at - CONFIRMATION_SKEW:
            return True
    return False
