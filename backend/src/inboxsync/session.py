"""The inbox session: wires stores, services and the realtime router together."""

import logging
from typing import Literal

from inbox_models import EvaluationProgress, EvaluationResult, Message, TeamMember, Thread, ThreadNote
from inboxsync.config import settings
from inboxsync.db import Database, db
from inboxsync.errors import BackendError, InboxError, InboxValidationError
from inboxsync.notify import LoggingNotifier, LoggingSoundAlert
from inboxsync.ports import (
    AttachmentStorage,
    ChatCompletion,
    ImageFile,
    InboxBackend,
    KeyValueStore,
    Notifier,
    SendGateway,
    SoundAlert,
)
from inboxsync.realtime import ChangeFeedBus, PostgresChangeFeed, RealtimeRouter
from inboxsync.services.completion import CompletionClient
from inboxsync.services.contacts import ContactDirectory
from inboxsync.services.notes import NoteExtractor, ProgressCallback
from inboxsync.services.preferences import JsonFileKeyValueStore, PreferenceStore, Preferences
from inboxsync.services.search import MessageSearch
from inboxsync.services.segmentation import Segmenter
from inboxsync.services.send_proxy import SendProxyClient
from inboxsync.services.sender import MessageSender, SendOutcome, SendResult, select_images
from inboxsync.services.storage import SignedUrlStorage
from inboxsync.stores.messages import MessageStore
from inboxsync.stores.threads import ThreadFilter, ThreadOrder, ThreadStore

logger = logging.getLogger(__name__)


class InboxSession:
    """One operator's view of the inbox.

    Every collaborator is passed in; nothing here is global. Operations
    catch engine errors at their boundary, log them, and report them
    through the notifier instead of raising.
    """

    def __init__(
        self,
        backend: InboxBackend,
        gateway: SendGateway,
        storage: AttachmentStorage,
        completion: ChatCompletion,
        notifier: Notifier,
        sound: SoundAlert,
        kv: KeyValueStore,
        team_member: TeamMember,
        bus: ChangeFeedBus | None = None,
        change_feed: PostgresChangeFeed | None = None,
        segmenter: Segmenter | None = None,
        threads_page_size: int | None = None,
        messages_page_size: int | None = None,
    ):
        self.backend = backend
        self.notifier = notifier
        self.team_member = team_member
        self.bus = bus or ChangeFeedBus()
        self.change_feed = change_feed

        self.threads = ThreadStore(backend, threads_page_size)
        self.messages = MessageStore(backend, messages_page_size)
        self.search = MessageSearch(backend, self.messages)
        self.sender = MessageSender(self.threads, self.messages, storage, gateway, notifier)
        self.notes_extractor = NoteExtractor(backend, completion, segmenter)
        self.contacts = ContactDirectory()
        self._preference_store = PreferenceStore(kv)
        self.preferences = Preferences()

        self.router = RealtimeRouter(
            self.bus,
            self.threads,
            self.messages,
            selection=lambda: self.threads.selected_thread_id,
            preferences=lambda: self.preferences,
            sound=sound,
        )

        self.compose_text = ""
        self.compose_images: list[ImageFile] = []
        self.sending = False
        self.notes: list[ThreadNote] = []
        self.evaluating = False
        self.evaluation_progress: EvaluationProgress | None = None

    async def __aenter__(self) -> "InboxSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        self.preferences = self._preference_store.load()
        await self.router.start()
        if self.change_feed is not None:
            try:
                await self.change_feed.start()
            except BackendError as e:
                logger.error(f"Realtime feed unavailable: {e}")
                self.notifier.error("Live updates are unavailable")
        await self._load_contacts()
        await self.refresh_threads()

    async def close(self):
        if self.change_feed is not None:
            await self.change_feed.stop()
        await self.router.stop()
        self.search.clear()
        self.messages.reset()

    async def _load_contacts(self):
        try:
            self.contacts = ContactDirectory(await self.backend.list_contacts())
        except BackendError as e:
            logger.error(f"Error fetching contacts: {e}")

    # Threads

    @property
    def selected_thread(self) -> Thread | None:
        return self.threads.selected

    async def refresh_threads(self) -> bool:
        try:
            return await self.threads.load_page(0)
        except BackendError as e:
            logger.error(f"Error fetching threads: {e}")
            self.notifier.error("Failed to load threads")
            return False

    async def load_more_threads(self) -> bool:
        if not self.threads.has_more or self.threads.loading:
            return False
        try:
            return await self.threads.load_page(self.threads.page + 1)
        except BackendError as e:
            logger.error(f"Error fetching more threads: {e}")
            self.notifier.error("Failed to load threads")
            return False

    async def select_thread(self, thread_id: int) -> bool:
        """Open a thread: clears search, loads its latest messages and notes,
        and marks it read."""
        self.threads.selected_thread_id = thread_id
        self.search.clear()
        self.notes = []
        try:
            loaded = await self.messages.load_thread(thread_id)
        except BackendError as e:
            logger.error(f"Error fetching messages for thread {thread_id}: {e}")
            self.notifier.error("Failed to load messages")
            return False
        if not loaded:
            return False
        await self.threads.mark_read(thread_id)
        await self.load_notes()
        return True

    async def load_older_messages(self) -> bool:
        thread_id = self.threads.selected_thread_id
        if thread_id is None or not self.messages.has_more or self.messages.loading:
            return False
        try:
            return await self.messages.load_thread(thread_id, self.messages.page + 1)
        except BackendError as e:
            logger.error(f"Error fetching older messages for thread {thread_id}: {e}")
            self.notifier.error("Failed to load messages")
            return False

    async def refresh(self):
        """Reload the first thread page and the open thread's latest messages."""
        await self.refresh_threads()
        thread_id = self.threads.selected_thread_id
        if thread_id is None:
            return
        try:
            await self.messages.load_thread(thread_id)
        except BackendError as e:
            logger.error(f"Error refreshing messages for thread {thread_id}: {e}")
            self.notifier.error("Failed to load messages")

    def visible_threads(
        self,
        query: str = "",
        thread_filter: ThreadFilter = ThreadFilter.ALL,
        order: ThreadOrder = ThreadOrder.RECENT,
    ) -> list[Thread]:
        return self.threads.visible(query, thread_filter, order, self.contacts)

    # Preferences

    def toggle_sound(self) -> bool:
        self.preferences = Preferences(sound_enabled=not self.preferences.sound_enabled)
        self._preference_store.save(self.preferences)
        return self.preferences.sound_enabled

    # Compose and send

    def set_compose_text(self, text: str):
        self.compose_text = text

    def add_images(self, images: list[ImageFile]) -> int:
        """Add picked files to the compose area; returns how many were taken."""
        before = len(self.compose_images)
        selection = select_images(self.compose_images, images)
        self.compose_images = selection.accepted
        for reason in selection.rejected:
            self.notifier.error(reason)
        added = len(self.compose_images) - before
        if added:
            self.notifier.success(f"{added} image{'s' if added > 1 else ''} added")
        return added

    def remove_image(self, index: int):
        if 0 <= index < len(self.compose_images):
            del self.compose_images[index]

    async def send(self) -> SendResult:
        thread = self.selected_thread
        if thread is None:
            self.notifier.error("No thread selected")
            return SendResult(SendOutcome.REJECTED, error="no thread selected")

        self.sending = True
        try:
            result = await self.sender.send(
                thread, self.compose_text, list(self.compose_images), self.team_member
            )
        finally:
            self.sending = False

        if result.outcome == SendOutcome.SENT:
            self.compose_text = ""
            self.compose_images = []
        return result

    # Search

    async def search_messages(self, query: str) -> list[Message]:
        thread_id = self.threads.selected_thread_id
        if thread_id is None:
            self.search.clear()
            return []
        try:
            return await self.search.search(thread_id, query)
        except BackendError as e:
            logger.error(f"Error searching messages: {e}")
            self.notifier.error("Failed to search messages")
            return []

    async def navigate_search(self, direction: Literal["next", "prev"]) -> Message | None:
        try:
            return await self.search.navigate(direction)
        except BackendError as e:
            logger.error(f"Error loading search result: {e}")
            self.notifier.error("Failed to search messages")
            return None

    def close_search(self):
        self.search.clear()

    # Notes

    async def load_notes(self) -> list[ThreadNote]:
        thread_id = self.threads.selected_thread_id
        if thread_id is None:
            return []
        try:
            notes = await self.backend.list_notes(thread_id)
        except BackendError as e:
            logger.error(f"Error fetching notes for thread {thread_id}: {e}")
            self.notifier.error("Failed to load thread notes")
            return self.notes
        if self.threads.selected_thread_id == thread_id:
            self.notes = notes
        return notes

    async def evaluate_notes(
        self, on_progress: ProgressCallback | None = None
    ) -> EvaluationResult | None:
        thread = self.selected_thread
        if thread is None or self.evaluating:
            return None

        def track(progress: EvaluationProgress):
            self.evaluation_progress = progress
            if on_progress:
                on_progress(progress)

        self.evaluating = True
        self.evaluation_progress = EvaluationProgress()
        try:
            result = await self.notes_extractor.evaluate(thread, track)
        except InboxValidationError as e:
            self.notifier.error(str(e))
            return None
        except InboxError as e:
            logger.error(f"Error evaluating messages: {e}")
            self.notifier.error("Failed to evaluate messages")
            return None
        finally:
            self.evaluating = False
            self.evaluation_progress = None

        if result.segments_total == 0:
            self.notifier.info("No new conversation segments to evaluate")
            return result

        await self.load_notes()
        self.notifier.success(
            f"Created {result.notes_created} new notes from {result.segments_total} conversation segments"
        )
        return result


def build_session(
    team_member: TeamMember,
    database: Database | None = None,
    notifier: Notifier | None = None,
    sound: SoundAlert | None = None,
) -> InboxSession:
    """Session wired to the configured database and edge functions.

    The database must be connected before the session is opened.
    """
    database = database or db
    bus = ChangeFeedBus()
    return InboxSession(
        backend=database,
        gateway=SendProxyClient(),
        storage=SignedUrlStorage(),
        completion=CompletionClient(),
        notifier=notifier or LoggingNotifier(),
        sound=sound or LoggingSoundAlert(),
        kv=JsonFileKeyValueStore(settings.preferences_path),
        team_member=team_member,
        bus=bus,
        change_feed=PostgresChangeFeed(bus, database.database_url),
    )
