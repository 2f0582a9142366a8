"""Realtime change feed: in-process bus, Postgres listener, and event router."""

import asyncio
import json
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

import asyncpg
from pydantic import ValidationError

from inbox_models import ChangeEvent, ChangeType, Direction, Message
from inboxsync.config import settings
from inboxsync.errors import BackendError
from inboxsync.ports import SoundAlert
from inboxsync.services.preferences import Preferences
from inboxsync.stores.messages import MessageStore
from inboxsync.stores.threads import ThreadStore

logger = logging.getLogger(__name__)

# Message ids remembered for sound dedup
SEEN_ALERTS_LIMIT = 1000


@dataclass
class Subscription:
    """A queue receiving change events for one table."""

    table: str
    event_type: ChangeType | None = None
    row_filter: dict[str, Any] | None = None
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    def wants(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.event_type is not None and event.type != self.event_type:
            return False
        return event.matches(self.row_filter)


class ChangeFeedBus:
    """Simple in-process pub/sub for row change events."""

    def __init__(self):
        # table -> subscriptions
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        table: str,
        event_type: ChangeType | None = None,
        row_filter: dict[str, Any] | None = None,
    ) -> Subscription:
        subscription = Subscription(table=table, event_type=event_type, row_filter=row_filter)
        async with self._lock:
            self._subscriptions[table].append(subscription)
        logger.info(f"Subscribed to {table} changes")
        return subscription

    async def unsubscribe(self, subscription: Subscription):
        async with self._lock:
            subscriptions = self._subscriptions.get(subscription.table, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
                if not subscriptions:
                    del self._subscriptions[subscription.table]
        logger.info(f"Unsubscribed from {subscription.table} changes")

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, []))

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription; returns the count."""
        delivered = 0
        async with self._lock:
            for subscription in self._subscriptions.get(event.table, []):
                if not subscription.wants(event):
                    continue
                try:
                    subscription.queue.put_nowait(event)
                    delivered += 1
                except asyncio.QueueFull:
                    logger.warning(f"Queue full for {event.table} subscriber, dropping event")
        return delivered


class PostgresChangeFeed:
    """Relays NOTIFY payloads from the change-feed triggers onto a bus."""

    def __init__(
        self,
        bus: ChangeFeedBus,
        database_url: str | None = None,
        channel: str | None = None,
    ):
        self.bus = bus
        self.database_url = database_url or settings.database_url
        self.channel = channel or settings.realtime_channel
        self._conn: asyncpg.Connection | None = None
        self._pending: set[asyncio.Task] = set()

    async def start(self):
        try:
            self._conn = await asyncpg.connect(self.database_url)
            await self._conn.add_listener(self.channel, self._on_notify)
        except (asyncpg.PostgresError, OSError) as e:
            raise BackendError(f"Could not listen on {self.channel}: {e}") from e
        logger.info(f"Listening for changes on {self.channel}")

    async def stop(self):
        if self._conn is not None:
            await self._conn.remove_listener(self.channel, self._on_notify)
            await self._conn.close()
            self._conn = None
        for task in list(self._pending):
            task.cancel()
        logger.info(f"Stopped listening on {self.channel}")

    def _on_notify(self, connection, pid, channel, payload):
        event = decode_notification(payload)
        if event is None:
            return
        task = asyncio.get_running_loop().create_task(self.bus.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def decode_notification(payload: str) -> ChangeEvent | None:
    try:
        return ChangeEvent.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        logger.error(f"Ignoring malformed change notification: {e}")
        return None


class RealtimeRouter:
    """Applies change-feed events to the thread and message stores.

    Thread changes reload the first thread page. New messages update their
    thread's preview and, when their thread is the one selected at dispatch
    time, are merged into the open conversation.
    """

    def __init__(
        self,
        bus: ChangeFeedBus,
        threads: ThreadStore,
        messages: MessageStore,
        selection: Callable[[], int | None],
        preferences: Callable[[], Preferences],
        sound: SoundAlert,
        on_scroll: Callable[[int], None] | None = None,
    ):
        self.bus = bus
        self.threads = threads
        self.messages = messages
        self.selection = selection
        self.preferences = preferences
        self.sound = sound
        self.on_scroll = on_scroll
        self.scroll_requests = 0
        self._alerted: OrderedDict[str, None] = OrderedDict()
        self._subscriptions: list[Subscription] = []
        self._consumers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._consumers)

    async def start(self):
        if self.running:
            return
        self._subscriptions = [
            await self.bus.subscribe("threads"),
            await self.bus.subscribe("messages", ChangeType.INSERT),
        ]
        self._consumers = [
            asyncio.create_task(self._consume(subscription))
            for subscription in self._subscriptions
        ]

    async def stop(self):
        for task in self._consumers:
            task.cancel()
        if self._consumers:
            await asyncio.gather(*self._consumers, return_exceptions=True)
        for subscription in self._subscriptions:
            await self.bus.unsubscribe(subscription)
        self._consumers = []
        self._subscriptions = []

    async def drain(self):
        """Wait until every queued event has been handled."""
        for subscription in self._subscriptions:
            await subscription.queue.join()

    async def _consume(self, subscription: Subscription):
        while True:
            event = await subscription.queue.get()
            try:
                await self.dispatch(event, self.selection())
            except Exception as e:
                logger.exception(f"Error handling {event.table} {event.type.value} event: {e}")
            finally:
                subscription.queue.task_done()

    async def dispatch(self, event: ChangeEvent, selected_thread_id: int | None):
        if event.table == "threads":
            await self._on_thread_change()
        elif event.table == "messages" and event.type == ChangeType.INSERT:
            await self._on_message_insert(event, selected_thread_id)

    async def _on_thread_change(self):
        try:
            await self.threads.load_page(0)
        except BackendError as e:
            logger.error(f"Error reloading threads after change: {e}")

    async def _on_message_insert(self, event: ChangeEvent, selected_thread_id: int | None):
        if not event.new:
            return
        if event.truncated:
            message = await self._fetch_truncated(event.new)
            if message is None:
                return
        else:
            message = Message.model_validate(event.new)

        self.threads.apply_incoming(message)

        if message.thread_id == selected_thread_id:
            self.messages.append_incoming(message)
            self.scroll_requests += 1
            if self.on_scroll:
                self.on_scroll(message.thread_id)

        if message.direction == Direction.INBOUND and self.preferences().sound_enabled:
            self._alert_once(message.message_id)

    async def _fetch_truncated(self, row: dict[str, Any]) -> Message | None:
        try:
            message = await self.messages.fetch_message(row["id"])
        except BackendError as e:
            logger.error(f"Error fetching message {row['id']} after change: {e}")
            return None
        if message is None:
            logger.warning(f"Message {row['id']} from change feed no longer exists")
        return message

    def _alert_once(self, message_id: str):
        if message_id in self._alerted:
            return
        self._alerted[message_id] = None
        if len(self._alerted) > SEEN_ALERTS_LIMIT:
            self._alerted.popitem(last=False)
        self.sound.play()
