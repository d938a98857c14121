"""Schema-aware validation of completion text and prompt guidance."""

from docbench.validation.guidance import aggregate_guidance, generate_guidance
from docbench.validation.schema_nodes import SchemaNode, make_nullable, nullable_schema, parse_schema, to_json_schema
from docbench.validation.validator import (
    OutputFormat,
    ValidationIssue,
    ValidationResult,
    is_valid_json_schema,
    validate_response,
)

__all__ = [
    "OutputFormat",
    "SchemaNode",
    "ValidationIssue",
    "ValidationResult",
    "aggregate_guidance",
    "generate_guidance",
    "is_valid_json_schema",
    "make_nullable",
    "nullable_schema",
    "parse_schema",
    "to_json_schema",
    "validate_response",
]
