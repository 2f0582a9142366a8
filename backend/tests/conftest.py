"""Shared fixtures and in-memory fakes for the inbox ports."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from inbox_models import (
    AttachmentRow,
    Contact,
    Creator,
    Direction,
    LatestMessage,
    Message,
    TeamMember,
    Thread,
    ThreadNote,
    ThreadPreviewRow,
)
from inboxsync.errors import BackendError, CompletionError, SendError, StorageError
from inboxsync.ports import ImageFile, SendRequest

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
CREATOR_PHONE = "+1 (555) 010-2030"
FAN_PHONE = "+15559998888"


def ts(minutes: float = 0) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_message(
    id: int,
    thread_id: int = 1,
    text: str | None = "hello",
    minutes: float = 0,
    direction: Direction = Direction.INBOUND,
    message_id: str | None = None,
    sender: str | None = FAN_PHONE,
    client_ref: str | None = None,
    speech_text: str | None = None,
) -> Message:
    return Message(
        id=id,
        message_id=message_id or f"msg-{id}",
        thread_id=thread_id,
        direction=direction,
        text=text,
        speech_text=speech_text,
        sender_phone_number=sender,
        created_at=ts(minutes),
        client_ref=client_ref,
    )


def make_thread(
    id: int,
    minutes: float = 0,
    latest: str | None = None,
    latest_minutes: float | None = None,
    last_read_minutes: float | None = None,
    client_id: str | None = None,
    name: str | None = None,
    participants: list[str] | None = None,
) -> Thread:
    latest_message = None
    if latest is not None:
        latest_message = LatestMessage(
            text=latest,
            created_at=ts(minutes if latest_minutes is None else latest_minutes),
        )
    return Thread(
        id=id,
        group_id=f"group-{id}",
        name=name,
        client_id=client_id,
        participants=participants or [],
        created_at=ts(0),
        updated_at=ts(minutes),
        last_read_at=None if last_read_minutes is None else ts(last_read_minutes),
        latest_message=latest_message,
    )


def make_image(name: str = "photo.jpg", content_type: str = "image/jpeg") -> ImageFile:
    return ImageFile(name=name, content_type=content_type, data=b"\xff\xd8\xff")


class FakeBackend:
    """In-memory InboxBackend.

    Add a method name to `failing` to make it raise BackendError. `hold(name)`
    makes the next call to that method wait until the returned event is set.
    """

    def __init__(self):
        self.threads: dict[int, Thread] = {}
        self.messages: list[Message] = []
        self.attachments: list[AttachmentRow] = []
        self.notes: list[ThreadNote] = []
        self.creators: dict[str, Creator] = {}
        self.contacts: list[Contact] = []
        self.failing: set[str] = set()
        self.calls: list[tuple] = []
        self._gates: dict[str, asyncio.Event] = {}

    def hold(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[name] = gate
        return gate

    async def _enter(self, name: str, *args):
        self.calls.append((name, *args))
        gate = self._gates.pop(name, None)
        if gate is not None:
            await gate.wait()
        if name in self.failing:
            raise BackendError(f"{name} failed")

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def add_thread(self, thread: Thread) -> Thread:
        self.threads[thread.id] = thread
        return thread

    def add_messages(self, *messages: Message):
        self.messages.extend(messages)

    def _thread_messages(self, thread_id: int) -> list[Message]:
        return sorted(
            (m for m in self.messages if m.thread_id == thread_id),
            key=lambda m: m.created_at,
        )

    async def get_threads_with_latest_messages(self, offset: int, limit: int) -> list[ThreadPreviewRow]:
        await self._enter("get_threads_with_latest_messages", offset, limit)
        rows = []
        for thread in self.threads.values():
            history = self._thread_messages(thread.id)
            latest = history[-1] if history else None
            rows.append(
                ThreadPreviewRow(
                    thread_id=thread.id,
                    group_id=thread.group_id,
                    thread_name=thread.name,
                    client_id=thread.client_id,
                    participants=thread.participants,
                    thread_created_at=thread.created_at,
                    thread_updated_at=thread.updated_at,
                    last_read_at=thread.last_read_at,
                    latest_message_text=latest.text if latest else None,
                    latest_message_speech_text=latest.speech_text if latest else None,
                    latest_message_created_at=latest.created_at if latest else None,
                    latest_message_sender_name=latest.sender_name if latest else None,
                    latest_message_sender_phone=latest.sender_phone_number if latest else None,
                )
            )
        rows.sort(
            key=lambda r: r.latest_message_created_at or r.thread_updated_at,
            reverse=True,
        )
        return rows[offset : offset + limit]

    async def list_threads(self, offset: int, limit: int) -> list[Thread]:
        await self._enter("list_threads", offset, limit)
        threads = sorted(self.threads.values(), key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy(update={"latest_message": None}) for t in threads][offset : offset + limit]

    async def mark_thread_as_read(self, thread_id: int) -> None:
        await self._enter("mark_thread_as_read", thread_id)
        if thread_id in self.threads:
            self.threads[thread_id].last_read_at = datetime.now(timezone.utc)

    async def get_messages(self, thread_id: int, offset: int, limit: int) -> list[Message]:
        await self._enter("get_messages", thread_id, offset, limit)
        newest_first = list(reversed(self._thread_messages(thread_id)))
        return newest_first[offset : offset + limit]

    async def get_attachments(self, message_ids: list[int]) -> list[AttachmentRow]:
        await self._enter("get_attachments", list(message_ids))
        return [row for row in self.attachments if row.message_id in message_ids]

    async def search_messages(self, thread_id: int, query: str) -> list[Message]:
        await self._enter("search_messages", thread_id, query)
        needle = query.lower()
        return [
            m
            for m in self._thread_messages(thread_id)
            if needle in (m.text or "").lower() or needle in (m.speech_text or "").lower()
        ]

    async def get_message(self, id: int) -> Message | None:
        await self._enter("get_message", id)
        return next((m for m in self.messages if m.id == id), None)

    async def get_all_messages(self, thread_id: int) -> list[Message]:
        await self._enter("get_all_messages", thread_id)
        return self._thread_messages(thread_id)

    async def get_note_anchors(self, thread_id: int) -> set[str]:
        await self._enter("get_note_anchors", thread_id)
        return {n.message_id for n in self.notes if n.thread_id == thread_id and n.message_id}

    async def list_notes(self, thread_id: int) -> list[ThreadNote]:
        await self._enter("list_notes", thread_id)
        return [n for n in self.notes if n.thread_id == thread_id]

    async def create_note(
        self,
        thread_id: int,
        content: str,
        source_message: str,
        message_id: str | None,
    ) -> ThreadNote:
        await self._enter("create_note", thread_id, content)
        note = ThreadNote(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            content=content,
            source_message=source_message,
            message_id=message_id,
            created_at=datetime.now(timezone.utc),
        )
        self.notes.append(note)
        return note

    async def get_creator(self, client_id: str) -> Creator | None:
        await self._enter("get_creator", client_id)
        return self.creators.get(client_id)

    async def list_contacts(self) -> list[Contact]:
        await self._enter("list_contacts")
        return list(self.contacts)


class FakeGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: list[SendRequest] = []

    async def send(self, request: SendRequest) -> dict:
        self.requests.append(request)
        if self.fail:
            raise SendError("HTTP 500: proxy down")
        return {"success": True}


class FakeStorage:
    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.uploads: list[tuple[int, str]] = []

    async def upload(self, thread_id: int, image: ImageFile) -> str:
        if image.name in self.fail_on:
            raise StorageError(f"Failed to upload {image.name}")
        self.uploads.append((thread_id, image.name))
        return f"https://cdn.test/{thread_id}/{image.name}"


class FakeCompletion:
    """Returns queued responses in order, then the default."""

    def __init__(self, responses: list[str] | None = None, default: str = "NO_ACTIONABLE_INSIGHTS"):
        self.responses = list(responses or [])
        self.default = default
        self.fail = False
        self.calls: list[dict] = []

    async def complete(self, messages, model=None, temperature=None, max_tokens=None) -> str:
        self.calls.append(
            {"messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.fail:
            raise CompletionError("AI service temporarily unavailable")
        if self.responses:
            return self.responses.pop(0)
        return self.default


class RecordingNotifier:
    def __init__(self):
        self.toasts: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.toasts.append(("info", message))

    def success(self, message: str) -> None:
        self.toasts.append(("success", message))

    def error(self, message: str) -> None:
        self.toasts.append(("error", message))

    def messages(self, level: str) -> list[str]:
        return [m for lvl, m in self.toasts if lvl == level]


class RecordingSound:
    def __init__(self):
        self.plays = 0

    def play(self) -> None:
        self.plays += 1


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sound() -> RecordingSound:
    return RecordingSound()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def team_member() -> TeamMember:
    return TeamMember(id="tm-1", full_name="Alex Operator")


async def wait_for_call(backend: FakeBackend, name: str):
    """Yield to the loop until the backend has seen a call to name."""
    while backend.called(name) == 0:
        await asyncio.sleep(0)
