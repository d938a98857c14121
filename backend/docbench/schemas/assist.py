"""Prompt optimizer and schema generator request/response schemas."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class PromptOptimizeRequest(BaseModel):
    user_prompt: str = Field(min_length=1)
    output_format: Literal["json", "jsonl"] = "json"


class PromptOptimizeResult(BaseModel):
    optimized_prompt: str
    model: str


class SchemaGenerateRequest(BaseModel):
    """Both prompts feed the generator; the optimized one carries the field details."""

    user_prompt: str = Field(min_length=1)
    optimized_prompt: str = Field(min_length=1)
    output_format: Literal["json", "jsonl"] = "json"


class SchemaGenerateResult(BaseModel):
    validation_schema: dict[str, Any]
    model: str
