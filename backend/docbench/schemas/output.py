"""Per-model output schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class QualityRead(BaseModel):
    """Quality sub-scores of a JSON-valid output."""

    syntax: float
    structural: float
    completeness: float
    content: float
    consensus: float
    overall: int
    flags: dict[str, bool] | None = None
    metrics: dict[str, int] | None = None


class OutputRead(BaseModel):
    """Serialized output row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: int
    model: str
    output_format: str
    raw_response: str | None
    parsed_json: Any | None
    json_valid: bool
    attributes_valid: bool
    formats_valid: bool
    validation_passed: bool
    validation_details_json: dict[str, Any]
    prompt_guidance_json: list[str]
    tokens_in: int | None
    tokens_out: int | None
    cost_in: float | None
    cost_out: float | None
    execution_time_ms: int
    null_count: int
    error_message: str | None
    error_category: str | None
    is_retryable: bool | None
    quality: QualityRead | None = None
    created_at: datetime


class DocumentOutputsRead(BaseModel):
    """All outputs for one document of a batch."""

    run_id: int
    document_id: int
    filename: str
    consensus_analysis: dict[str, Any] | None = None
    outputs: list[OutputRead]
