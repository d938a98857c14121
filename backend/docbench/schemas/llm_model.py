"""Completion model catalog schemas."""

from pydantic import BaseModel, ConfigDict, Field


class LLMModelUpsert(BaseModel):
    """Pricing and capability row keyed by ``provider/name``."""

    provider: str = Field(min_length=1, max_length=128, pattern=r"^[^/\s]+$")
    name: str = Field(min_length=1, max_length=255, pattern=r"^[^/\s]+$")
    display_name: str | None = None
    supports_json_mode: bool = False
    price_in: float = Field(default=0.0, ge=0)
    price_out: float = Field(default=0.0, ge=0)


class LLMModelRead(BaseModel):
    """Serialized catalog row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    name: str
    identifier: str
    display_name: str
    supports_json_mode: bool
    price_in: float
    price_out: float
