"""Message and attachment models."""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from inbox_models.thread import LatestMessage

# Reserved prefix for locally created, unconfirmed messages
TEMP_ID_PREFIX = "temp-"


class Direction(str, Enum):
    """Which way a message travelled."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class OutboundState(str, Enum):
    """Lifecycle of a message sent from the dashboard."""

    COMPOSING = "composing"
    OPTIMISTIC = "optimistic"  # Shown locally, waiting for the realtime insert
    CONFIRMED = "confirmed"
    FAILED_REMOVED = "failed_removed"


class Attachment(BaseModel):
    """A file attached to a message."""

    id: int = Field(..., description="Attachment ID")
    url: str = Field(..., description="Public URL")


class AttachmentRow(Attachment):
    """Attachment as stored, keyed by the owning message's numeric ID."""

    message_id: int = Field(..., description="Owning message ID")


class TeamMember(BaseModel):
    """A dashboard operator who can send messages."""

    id: str | None = Field(None, description="Team member ID")
    full_name: str = Field(..., description="Display name")


class Message(BaseModel):
    """A single chat event within a thread."""

    id: int = Field(..., description="Server-assigned numeric ID")
    message_id: str = Field(..., description="External message identifier")
    thread_id: int = Field(..., description="Owning thread ID")
    message_type: str = Field("text", description="Carrier message type")
    direction: Direction = Field(..., description="Inbound or outbound")
    text: str | None = Field(None, description="Body text")
    speech_text: str | None = Field(None, description="Voice transcription")
    sender_phone_number: str | None = Field(None, description="Sender phone/identifier")
    sender_name: str | None = Field(None, description="Sender display name")
    reaction: str | None = Field(None, description="Reaction payload")
    reaction_event: str | None = Field(None, description="Reaction event type")
    created_at: datetime = Field(..., description="Creation timestamp")
    sent_by_team_member_id: str | None = Field(None, description="Attributed team member")
    sent_by_team_member: TeamMember | None = Field(None, description="Attributed team member details")
    attachments: list[Attachment] = Field(default_factory=list, description="Attachments")
    client_ref: str | None = Field(None, description="Client correlation key echoed by the send path")

    @property
    def body(self) -> str:
        return self.text or self.speech_text or ""

    @property
    def is_optimistic(self) -> bool:
        return self.message_id.startswith(TEMP_ID_PREFIX)

    def preview(self) -> LatestMessage:
        return LatestMessage(
            text=self.body,
            created_at=self.created_at,
            sender_name=self.sender_name,
            sender_phone_number=self.sender_phone_number,
        )
