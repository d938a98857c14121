"""Turn validation failures into prompt-improvement suggestions.

Guidance is deterministic: the same validation result and schema always yield
the same ordered list, so guidance strings can be counted across a batch.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from docbench.validation.validator import (
    MARKDOWN_FENCE_TIP,
    NOT_AN_OBJECT,
    SURROUNDING_TEXT_TIP,
    UNSUPPORTED_NUMBER,
    ValidationIssue,
    ValidationResult,
    pointer_segments,
)

PASSED_NOTE = "Validation passed! Consider testing with additional documents to ensure consistency."

_FORMAT_GUIDANCE = {
    "date": 'Date Format: Add to prompt: "Dates must be in ISO 8601 format: YYYY-MM-DD (e.g., 2024-01-15)"',
    "date-time": (
        'DateTime Format: Add to prompt: "DateTimes must be in ISO 8601 format: '
        'YYYY-MM-DDTHH:MM:SSZ (e.g., 2024-01-15T14:30:00Z)"'
    ),
    "email": 'Email Format: Add to prompt: "Emails must be valid format: user@domain.com"',
    "uri": 'URL Format: Add to prompt: "URLs must include protocol: https://example.com"',
    "url": 'URL Format: Add to prompt: "URLs must include protocol: https://example.com"',
    "uuid": 'UUID Format: Add to prompt: "UUIDs must be valid format: 123e4567-e89b-12d3-a456-426614174000"',
}
_TYPE_EXAMPLES = {
    "string": '"text here"',
    "number": "123",
    "integer": "42",
    "boolean": "true or false",
    "array": "[item1, item2]",
    "object": "{key: value}",
}


def generate_guidance(result: ValidationResult, schema: dict[str, Any]) -> list[str]:
    """Return ordered guidance strings for one validation result."""

    if result.validation_passed:
        return [PASSED_NOTE]

    schema = schema or {}
    guidance: list[str] = []
    if not result.json_valid:
        guidance.extend(_json_guidance(result))
        return guidance
    if not result.attributes_valid:
        guidance.extend(_attribute_guidance(result, schema))
    if not result.formats_valid:
        guidance.extend(_format_guidance(result.format_errors, schema))
    return guidance


def aggregate_guidance(guidance_lists: list[list[str]], limit: int | None = None) -> list[str]:
    """Rank guidance by frequency, annotating repeated entries with their count."""

    counts: Counter[str] = Counter()
    for entries in guidance_lists:
        counts.update(entries or [])
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [f"{message} ({count}× occurrences)" if count > 1 else message for message, count in ranked]


def example_value(prop_schema: dict[str, Any] | None) -> str:
    """Example JSON literal for a property schema, used in missing-field guidance."""

    if not isinstance(prop_schema, dict):
        return "null"
    declared = prop_schema.get("type")
    type_name = next((t for t in declared if t != "null"), None) if isinstance(declared, list) else declared
    if type_name == "string":
        if prop_schema.get("format") == "date":
            return '"2024-01-15"'
        if prop_schema.get("format") == "email":
            return '"user@example.com"'
        if prop_schema.get("enum"):
            return f'"{prop_schema["enum"][0]}"'
        return '"example"'
    if type_name in ("number", "integer"):
        return "0"
    if type_name == "boolean":
        return "false"
    if type_name == "array":
        return "[]"
    if type_name == "object":
        return "{}"
    return "null"


def schema_for_pointer(schema: dict[str, Any], pointer: str) -> dict[str, Any] | None:
    """Resolve the sub-schema describing the value at a JSON pointer."""

    current: Any = schema
    for part in pointer_segments(pointer):
        if not isinstance(current, dict):
            return None
        properties = current.get("properties")
        if isinstance(properties, dict) and part in properties:
            current = properties[part]
        elif isinstance(current.get("items"), dict):
            current = current["items"]
        else:
            return None
    return current if isinstance(current, dict) else None


def _json_guidance(result: ValidationResult) -> list[str]:
    guidance: list[str] = []
    if any(UNSUPPORTED_NUMBER in error for error in result.json_errors):
        guidance.append(
            'JSON Error: Add to prompt: "Return very long numbers such as account or reference numbers as strings."'
        )
    if MARKDOWN_FENCE_TIP in result.json_errors:
        guidance.append(
            'JSON Error: Add to prompt: "Return ONLY valid JSON. Do not wrap in markdown code blocks (```json)."'
        )
    if SURROUNDING_TEXT_TIP in result.json_errors:
        guidance.append('JSON Error: Add to prompt: "Output ONLY the JSON object. No explanatory text before or after."')
    if any("syntax" in error or "Invalid JSON -" in error for error in result.json_errors) and not guidance:
        guidance.append(
            'JSON Error: Add to prompt: "Ensure valid JSON syntax: use double quotes for strings, '
            'no trailing commas, proper brackets."'
        )
    if not guidance:
        guidance.append(
            'JSON Error: Emphasize JSON format: "Your response must be valid, parseable JSON. '
            'Test your output with a JSON validator."'
        )
    return guidance


def _attribute_guidance(result: ValidationResult, schema: dict[str, Any]) -> list[str]:
    guidance: list[str] = []
    properties = schema.get("properties") if isinstance(schema.get("properties"), dict) else {}

    if NOT_AN_OBJECT in result.attribute_errors:
        guidance.append('Structure Error: Add to prompt: "Return a single JSON object, not an array or a bare value."')

    for name in result.missing_attributes:
        guidance.append(
            f'Missing Field ({name}): Add to prompt: "The \'{name}\' field is REQUIRED. '
            f'Use null if data is not available. Example: "{name}": {example_value(properties.get(name))}"'
        )

    if result.unexpected_attributes:
        allowed = ", ".join(f'"{key}"' for key in properties)
        for name in result.unexpected_attributes:
            guidance.append(
                f'Unexpected Field ({name}): Add to prompt: "Use ONLY these field names: {allowed}. '
                'Do not add extra fields."'
            )
    return guidance


def _format_guidance(issues: list[ValidationIssue], schema: dict[str, Any]) -> list[str]:
    guidance: list[str] = []

    seen_type_paths: set[str] = set()
    for issue in issues:
        if issue.keyword != "type" or issue.path in seen_type_paths:
            continue
        seen_type_paths.add(issue.path)
        expected = issue.message.removeprefix("must be ").split(",")[0]
        field_name = _dotted(issue.path) or "root"
        guidance.append(
            f"Type Error ({field_name}): Add to prompt: \"The '{field_name}' field must be {expected}, "
            f'not a different type. Example: {_TYPE_EXAMPLES.get(expected, expected)}"'
        )

    if any(issue.keyword == "required" and len(pointer_segments(issue.path)) > 1 for issue in issues):
        guidance.append(
            "Required Fields: Some required fields are missing from nested objects. "
            "Ensure all nested required properties are included."
        )

    formats: list[str] = []
    for issue in issues:
        if issue.keyword != "format":
            continue
        prop_schema = schema_for_pointer(schema, issue.path)
        format_name = prop_schema.get("format") if prop_schema else None
        if format_name is None:
            format_name = issue.message.removeprefix('must match format "').rstrip('"')
        if format_name not in formats:
            formats.append(format_name)
    for format_name in formats:
        guidance.append(
            _FORMAT_GUIDANCE.get(
                format_name,
                f"Format Violation: Ensure '{format_name}' format is followed exactly as specified.",
            )
        )

    seen_enum_paths: set[str] = set()
    for issue in issues:
        if issue.keyword != "enum" or issue.path in seen_enum_paths:
            continue
        seen_enum_paths.add(issue.path)
        prop_schema = schema_for_pointer(schema, issue.path) or {}
        allowed = ", ".join(f'"{value}"' for value in prop_schema.get("enum", []) if value is not None)
        guidance.append(f"Invalid Value ({_dotted(issue.path) or 'field'}): Must be one of: {allowed}")

    if any(issue.keyword == "pattern" for issue in issues):
        guidance.append(
            "Format Pattern: Some fields don't match expected patterns. Add specific format examples in prompt "
            '(e.g., phone: "+1-555-123-4567", postal: "12345").'
        )
    return guidance


def _dotted(pointer: str) -> str:
    return ".".join(pointer_segments(pointer))
