"""Shared Pydantic models for inbox-sync."""

from inbox_models.thread import LatestMessage, Thread, ThreadPreviewRow, sort_by_activity
from inbox_models.message import (
    TEMP_ID_PREFIX,
    Attachment,
    AttachmentRow,
    Direction,
    Message,
    OutboundState,
    TeamMember,
)
from inbox_models.note import EvaluationProgress, EvaluationResult, ThreadNote
from inbox_models.directory import Contact, Creator
from inbox_models.events import ChangeEvent, ChangeType

__all__ = [
    # Threads
    "LatestMessage",
    "Thread",
    "ThreadPreviewRow",
    "sort_by_activity",
    # Messages
    "TEMP_ID_PREFIX",
    "Attachment",
    "AttachmentRow",
    "Direction",
    "Message",
    "OutboundState",
    "TeamMember",
    # Notes
    "ThreadNote",
    "EvaluationProgress",
    "EvaluationResult",
    # Directory
    "Creator",
    "Contact",
    # Realtime
    "ChangeEvent",
    "ChangeType",
]
