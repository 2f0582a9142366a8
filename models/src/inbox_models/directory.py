"""Creator and contact records."""

from pydantic import BaseModel, Field


class Creator(BaseModel):
    """A managed creator (stored in the clients table)."""

    id: str = Field(..., description="Creator ID")
    username: str = Field(..., description="Creator username")
    phone: str | None = Field(None, description="Creator phone number")


class Contact(BaseModel):
    """A named phone number."""

    id: int = Field(..., description="Contact ID")
    phone_number: str = Field(..., description="Phone number")
    name: str | None = Field(None, description="Display name")
