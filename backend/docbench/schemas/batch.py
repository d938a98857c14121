"""Batch job request/response schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class BatchJobCreate(BaseModel):
    """Batch submission: prompts, schema, models and documents."""

    name: str = Field(min_length=1, max_length=255)
    owner: str = Field(default="local", min_length=1, max_length=255)
    system_prompt: str = Field(min_length=1)
    user_prompt: str = Field(min_length=1)
    output_format: Literal["json", "jsonl"] = "json"
    validation_schema: dict[str, Any] = Field(default_factory=dict)
    models: list[str] = Field(min_length=1)
    document_ids: list[int] = Field(min_length=1)


class BatchJobRead(BaseModel):
    """Stored batch configuration."""

    id: int
    owner: str
    name: str
    system_prompt: str
    user_prompt: str
    output_format: str
    validation_schema: dict[str, Any]
    models: list[str]
    document_ids: list[int]
    status: str
    created_at: datetime
    updated_at: datetime


class BatchStatusRead(BaseModel):
    """Progress counters polled while a batch runs."""

    batch_job_id: int
    name: str
    status: str
    total_documents: int
    completed_documents: int
    successful_runs: int
    failed_runs: int
    current_document: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class BatchStartResult(BaseModel):
    """Acknowledgement that a batch run was scheduled."""

    batch_job_id: int
    status: str
    resumed: bool = False


class ModelAnalyticsRead(BaseModel):
    """Per-model aggregate for one batch."""

    model: str
    success_count: int
    failure_count: int
    success_rate: float
    avg_execution_time_ms: int
    total_cost: float
    avg_null_count: float
    total_null_count: int
    json_validity_rate: int
    attribute_validity_rate: int
    format_validity_rate: int
    attribute_failures: dict[str, dict[str, int]]
    common_errors: list[dict[str, Any]]
    validation_breakdown: dict[str, Any]


class AttributeFailureRead(BaseModel):
    """Failures of one attribute path across the batch."""

    attribute_path: str
    missing_count: int
    type_mismatch_count: int
    format_violation_count: int
    total_failures: int
    affected_models: list[str]
    affected_documents: list[str]
    missing_documents: list[str]


class PatternRead(BaseModel):
    """Systemic failure insight."""

    type: Literal["universal_failure", "model_specific", "document_specific", "type_issue"]
    severity: Literal["high", "medium", "low"]
    message: str
    affected_items: list[str]


class DocumentResultRead(BaseModel):
    """Pass/partial/fail outcome of one document across all models."""

    document_id: int
    filename: str
    status: Literal["all_passed", "partial", "all_failed"]
    passed_models: list[str]
    failed_models: list[str]


class BatchAnalyticsSummary(BaseModel):
    """Batch-wide headline numbers."""

    total_documents: int
    total_runs: int
    successful_runs: int
    failed_runs: int
    success_rate: float
    total_cost: float
    avg_execution_time_ms: int


class BatchAnalyticsRead(BaseModel):
    """Analytics read model for a batch."""

    batch_job_id: int
    status: str
    summary: BatchAnalyticsSummary
    model_analytics: list[ModelAnalyticsRead] = Field(default_factory=list)
    document_results: list[DocumentResultRead] = Field(default_factory=list)
    attribute_failures: list[AttributeFailureRead] = Field(default_factory=list)
    patterns: list[PatternRead] = Field(default_factory=list)
