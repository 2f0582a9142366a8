"""Realtime change-feed events."""

from enum import Enum
from typing import Any
from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    """Row change kinds carried by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row change notification from the backing store."""

    table: str = Field(..., description="Table name")
    type: ChangeType = Field(..., description="Change kind")
    new: dict[str, Any] | None = Field(None, description="Row after the change")
    old: dict[str, Any] | None = Field(None, description="Row before the change")
    truncated: bool = Field(False, description="Rows were too large to notify and carry only their keys")

    def matches(self, row_filter: dict[str, Any] | None) -> bool:
        """Check an equality filter such as {"thread_id": 7} against the new row."""
        if not row_filter:
            return True
        row = self.new or self.old or {}
        return all(row.get(column) == value for column, value in row_filter.items())
