"""API-specific request and response models."""

from pydantic import BaseModel, Field

from inbox_models import Direction, Message


class InboundMessagePayload(BaseModel):
    """A message event delivered by the messaging provider."""

    group_id: str = Field(..., description="External conversation/group ID")
    message_id: str = Field(..., description="Provider message ID, unique per message")
    direction: Direction = Field(Direction.INBOUND, description="Inbound or outbound")
    text: str | None = Field(None, description="Body text")
    speech_text: str | None = Field(None, description="Voice transcription")
    message_type: str = Field("text", description="Carrier message type")
    sender_phone_number: str | None = Field(None, description="Sender phone/identifier")
    sender_name: str | None = Field(None, description="Sender display name")
    participants: list[str] = Field(default_factory=list, description="Group participants")
    sent_by_team_member_id: str | None = Field(None, description="Team member who sent it")
    client_ref: str | None = Field(None, description="Correlation key from the send proxy")
    attachments: list[str] = Field(default_factory=list, description="Attachment URLs")


class InboundMessageResponse(BaseModel):
    """Result of storing an inbound message."""

    thread_id: int
    duplicate: bool = Field(False, description="The message_id was already stored")
    message: Message | None = None
