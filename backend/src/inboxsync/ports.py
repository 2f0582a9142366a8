"""Interfaces to the collaborators the engine talks to.

Concrete adapters live in inboxsync.db (asyncpg) and inboxsync.services
(httpx); tests substitute in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Protocol

from inbox_models import (
    AttachmentRow,
    Contact,
    Creator,
    Message,
    Thread,
    ThreadNote,
    ThreadPreviewRow,
)


@dataclass
class ImageFile:
    """An image picked for upload."""

    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1].lower() if "." in self.name else "bin"


@dataclass
class SendRequest:
    """Payload accepted by the outbound send proxy."""

    group_id: str
    content: str
    sender_name: str
    team_member_id: str | None = None
    attachments: list[str] = field(default_factory=list)
    client_ref: str | None = None

    def to_payload(self) -> dict:
        payload: dict = {
            "group_id": self.group_id,
            "content": self.content,
            "sender_name": self.sender_name,
            "team_member_id": self.team_member_id,
        }
        if self.attachments:
            payload["attachments"] = self.attachments
        if self.client_ref:
            payload["client_ref"] = self.client_ref
        return payload


class InboxBackend(Protocol):
    """Query/RPC surface of the backing store. Failures raise BackendError."""

    async def get_threads_with_latest_messages(
        self, offset: int, limit: int
    ) -> list[ThreadPreviewRow]: ...

    async def list_threads(self, offset: int, limit: int) -> list[Thread]: ...

    async def mark_thread_as_read(self, thread_id: int) -> None: ...

    async def get_messages(self, thread_id: int, offset: int, limit: int) -> list[Message]:
        """Newest first."""
        ...

    async def get_attachments(self, message_ids: list[int]) -> list[AttachmentRow]: ...

    async def search_messages(self, thread_id: int, query: str) -> list[Message]:
        """Oldest first."""
        ...

    async def get_message(self, id: int) -> Message | None: ...

    async def get_all_messages(self, thread_id: int) -> list[Message]:
        """Oldest first."""
        ...

    async def get_note_anchors(self, thread_id: int) -> set[str]: ...

    async def list_notes(self, thread_id: int) -> list[ThreadNote]: ...

    async def create_note(
        self,
        thread_id: int,
        content: str,
        source_message: str,
        message_id: str | None,
    ) -> ThreadNote: ...

    async def get_creator(self, client_id: str) -> Creator | None: ...

    async def list_contacts(self) -> list[Contact]: ...


class SendGateway(Protocol):
    async def send(self, request: SendRequest) -> dict: ...


class AttachmentStorage(Protocol):
    async def upload(self, thread_id: int, image: ImageFile) -> str:
        """Upload and return a public URL. Raises StorageError."""
        ...


class ChatCompletion(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class Notifier(Protocol):
    """Transient toast-style notifications."""

    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class SoundAlert(Protocol):
    def play(self) -> None: ...
