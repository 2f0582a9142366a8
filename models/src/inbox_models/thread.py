"""Thread models and activity ordering."""

from datetime import datetime
from pydantic import BaseModel, Field


class LatestMessage(BaseModel):
    """Denormalized preview of a thread's most recent message."""

    text: str = Field("", description="Message text or speech text")
    created_at: datetime = Field(..., description="When the message was created")
    sender_name: str | None = Field(None, description="Sender display name")
    sender_phone_number: str | None = Field(None, description="Sender phone/identifier")


class Thread(BaseModel):
    """A conversation channel with one external party."""

    id: int = Field(..., description="Thread ID")
    group_id: str = Field(..., description="External group identifier")
    name: str | None = Field(None, description="Display name")
    client_id: str | None = Field(None, description="Linked creator ID")
    participants: list[str] = Field(default_factory=list, description="Participant identifiers")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last activity timestamp")
    last_read_at: datetime | None = Field(None, description="When the thread was last read")
    latest_message: LatestMessage | None = Field(None, description="Latest message preview")

    @property
    def display_name(self) -> str:
        return self.name or f"Thread #{self.id}"

    @property
    def activity_at(self) -> datetime:
        """Latest message time if known, otherwise the thread's updated_at."""
        if self.latest_message:
            return self.latest_message.created_at
        return self.updated_at

    @property
    def is_unread(self) -> bool:
        if not self.latest_message:
            return False
        if self.last_read_at is None:
            return True
        return self.latest_message.created_at > self.last_read_at


class ThreadPreviewRow(BaseModel):
    """Row returned by the get_threads_with_latest_messages procedure."""

    thread_id: int
    group_id: str
    thread_name: str | None = None
    client_id: str | None = None
    participants: list[str] | None = None
    thread_created_at: datetime
    thread_updated_at: datetime
    last_read_at: datetime | None = None
    latest_message_text: str | None = None
    latest_message_speech_text: str | None = None
    latest_message_created_at: datetime | None = None
    latest_message_sender_name: str | None = None
    latest_message_sender_phone: str | None = None

    def to_thread(self) -> Thread:
        latest = None
        text = self.latest_message_text or self.latest_message_speech_text
        if text and self.latest_message_created_at:
            latest = LatestMessage(
                text=text,
                created_at=self.latest_message_created_at,
                sender_name=self.latest_message_sender_name,
                sender_phone_number=self.latest_message_sender_phone,
            )
        return Thread(
            id=self.thread_id,
            group_id=self.group_id,
            name=self.thread_name,
            client_id=self.client_id,
            participants=self.participants or [],
            created_at=self.thread_created_at,
            updated_at=self.thread_updated_at,
            last_read_at=self.last_read_at,
            latest_message=latest,
        )


def sort_by_activity(threads: list[Thread], newest_first: bool = True) -> list[Thread]:
    """Return threads ordered by activity; ties keep their current order."""
    return sorted(threads, key=lambda t: t.activity_at, reverse=newest_first)
