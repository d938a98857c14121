"""Document request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DocumentCreate(BaseModel):
    """Document payload with text already extracted from the source file."""

    filename: str = Field(min_length=1, max_length=512)
    text: str
    owner: str = Field(default="local", min_length=1, max_length=255)
    mime_type: str | None = None


class DocumentRead(BaseModel):
    """Serialized document metadata (text omitted)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner: str
    filename: str
    mime_type: str | None
    char_count: int
    created_at: datetime
