"""Thread note models and evaluation bookkeeping."""

from datetime import datetime
from pydantic import BaseModel, Field


class ThreadNote(BaseModel):
    """An AI-extracted insight anchored to a conversation segment."""

    id: str = Field(..., description="Note ID")
    thread_id: int = Field(..., description="Owning thread ID")
    content: str = Field(..., description="Insight text")
    source_message: str = Field(..., description="Transcript excerpt the insight came from")
    message_id: str | None = Field(None, description="Last message_id of the source segment")
    created_at: datetime = Field(..., description="Creation timestamp")


class EvaluationProgress(BaseModel):
    """Incremental progress of a note evaluation run."""

    current: int = Field(0, description="Segments processed so far")
    total: int = Field(0, description="Segments to process")
    processed: int = Field(0, description="Messages covered so far")
    notes_created: int = Field(0, description="Notes created so far")


class EvaluationResult(BaseModel):
    """Final outcome of a note evaluation run."""

    segments_total: int = 0
    segments_processed: int = 0
    messages_processed: int = 0
    notes: list[ThreadNote] = Field(default_factory=list)

    @property
    def notes_created(self) -> int:
        return len(self.notes)
