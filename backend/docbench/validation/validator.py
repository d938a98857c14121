"""Three-level validation of raw completion text against an extraction schema.

Level 1 checks that the text parses as JSON (single object or JSON lines),
level 2 compares top-level attribute names with the schema, and level 3 runs a
draft-07 validator over a null-tolerant copy of the schema. Level 1 gates the
other two; levels 2 and 3 are always both evaluated once the text parses.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from jsonschema.exceptions import ValidationError as JsonSchemaValidationError

from docbench.validation.schema_nodes import nullable_schema

OutputFormat = Literal["json", "jsonl"]

MARKDOWN_FENCE_TIP = "Tip: Response contains markdown code blocks"
SURROUNDING_TEXT_TIP = "Tip: Response may contain non-JSON text before or after the JSON object"
NOT_AN_OBJECT = "Response is not a JSON object"
UNSUPPORTED_NUMBER = "Unsupported number"

_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\r?\n(?P<body>.*?)\r?\n?```\s*$", re.DOTALL)
_REQUIRED_MESSAGE_RE = re.compile(r"^'(?P<name>.+)' is a required property$")


class NumberTooLargeError(ValueError):
    """An integer literal too long for the interpreter to convert to ``int``."""


@dataclass(slots=True)
class ValidationIssue:
    """One schema violation located by JSON pointer (and line, for JSON lines)."""

    message: str
    path: str = ""
    keyword: str | None = None
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "path": self.path, "keyword": self.keyword}
        if self.line is not None:
            payload["line"] = self.line
        return payload


@dataclass(slots=True)
class ValidationResult:
    """Outcome of all three validation levels for one completion."""

    json_valid: bool = False
    attributes_valid: bool = False
    formats_valid: bool = False
    parsed_data: Any = None
    json_errors: list[str] = field(default_factory=list)
    missing_attributes: list[str] = field(default_factory=list)
    unexpected_attributes: list[str] = field(default_factory=list)
    attribute_errors: list[str] = field(default_factory=list)
    format_errors: list[ValidationIssue] = field(default_factory=list)
    has_markdown_fence: bool = False
    has_surrounding_text: bool = False

    @property
    def validation_passed(self) -> bool:
        return self.json_valid and self.attributes_valid and self.formats_valid

    def details(self) -> dict[str, Any]:
        """Structured diagnostics in the shape persisted on an output row."""

        return {
            "json_errors": list(self.json_errors),
            "missing_attributes": list(self.missing_attributes),
            "unexpected_attributes": list(self.unexpected_attributes),
            "attribute_errors": list(self.attribute_errors),
            "format_errors": [issue.to_dict() for issue in self.format_errors],
        }

    def error_list(self) -> list[dict[str, Any]]:
        """Flat error list consumed by batch analytics."""

        if not self.json_valid:
            return [{"message": message, "path": "", "keyword": None} for message in self.json_errors]
        return [issue.to_dict() for issue in self.format_errors]


def validate_response(raw_response: str, schema: dict[str, Any], output_format: OutputFormat = "json") -> ValidationResult:
    """Run the three validation levels over one raw completion string."""

    result = ValidationResult()
    schema = schema or {}

    _check_json(raw_response or "", output_format, result)
    if not result.json_valid:
        return result

    sample = result.parsed_data[0] if output_format == "jsonl" else result.parsed_data
    _check_attributes(sample, schema, result)
    _check_formats(result.parsed_data, schema, output_format, result)
    return result


def is_valid_json_schema(schema: Any) -> bool:
    """Return True when ``schema`` is a mapping accepted by the draft-07 meta-schema."""

    if not isinstance(schema, dict):
        return False
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError:
        return False
    return True


def strip_markdown_fence(text: str) -> tuple[str, bool]:
    """Remove a single fenced code-block wrapper. Returns the body and whether one was removed."""

    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match is None:
        return stripped, False
    return match.group("body").strip(), True


def _check_json(raw_response: str, output_format: OutputFormat, result: ValidationResult) -> None:
    cleaned, had_fence = strip_markdown_fence(raw_response)
    result.has_markdown_fence = had_fence or "```" in raw_response

    if output_format == "jsonl":
        lines = [line for line in cleaned.splitlines() if line.strip()]
        if not lines:
            result.json_errors.append("Empty JSON Lines response")
            return
        parsed_lines: list[Any] = []
        for index, line in enumerate(lines, start=1):
            try:
                parsed_lines.append(_strict_loads(line))
            except NumberTooLargeError as exc:
                result.json_errors.append(f"Line {index}: {UNSUPPORTED_NUMBER} - {exc}")
                return
            except ValueError as exc:
                result.json_errors.append(f"Line {index}: Invalid JSON - {exc}")
                _add_json_tips(line, str(exc), result)
                return
        result.json_valid = True
        result.parsed_data = parsed_lines
        return

    try:
        result.parsed_data = _strict_loads(cleaned)
    except NumberTooLargeError as exc:
        result.json_errors.append(f"{UNSUPPORTED_NUMBER}: {exc}")
        return
    except ValueError as exc:
        result.json_errors.append(f"Invalid JSON syntax: {exc}")
        _add_json_tips(cleaned, str(exc), result)
        return
    result.json_valid = True


def _add_json_tips(text: str, error_message: str, result: ValidationResult) -> None:
    body = text.strip()
    starts_with_json = body[:1] in ("{", "[")
    contains_json = "{" in body or "[" in body
    if (contains_json and not starts_with_json) or error_message.startswith("Extra data"):
        result.has_surrounding_text = True
        result.json_errors.append(SURROUNDING_TEXT_TIP)
    if "```" in body:
        result.json_errors.append(MARKDOWN_FENCE_TIP)


def _strict_loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant, parse_int=_parse_int)


def _parse_int(literal: str) -> int:
    try:
        return int(literal)
    except ValueError as exc:
        digits = len(literal.lstrip("-"))
        raise NumberTooLargeError(f"integer literal with {digits} digits is too large to convert") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def _check_attributes(sample: Any, schema: dict[str, Any], result: ValidationResult) -> None:
    if not isinstance(sample, dict):
        result.attribute_errors.append(NOT_AN_OBJECT)
        result.attributes_valid = False
        return

    declared = schema.get("properties")
    required = schema.get("required") or []
    result.missing_attributes = [str(name) for name in required if name not in sample]
    if isinstance(declared, dict):
        result.unexpected_attributes = [key for key in sample if key not in declared]
    result.attributes_valid = not result.missing_attributes and not result.unexpected_attributes


def _check_formats(parsed: Any, schema: dict[str, Any], output_format: OutputFormat, result: ValidationResult) -> None:
    validator = Draft7Validator(nullable_schema(schema), format_checker=Draft7Validator.FORMAT_CHECKER)
    if output_format == "jsonl":
        for index, item in enumerate(parsed, start=1):
            result.format_errors.extend(_collect_issues(validator, item, line=index))
    else:
        result.format_errors.extend(_collect_issues(validator, parsed, line=None))
    result.formats_valid = not result.format_errors


def _collect_issues(validator: Draft7Validator, instance: Any, *, line: int | None) -> list[ValidationIssue]:
    issues = [_to_issue(error, line) for error in validator.iter_errors(instance)]
    issues.sort(key=lambda issue: (issue.path, issue.keyword or "", issue.message))
    return issues


def _to_issue(error: JsonSchemaValidationError, line: int | None) -> ValidationIssue:
    keyword = str(error.validator) if error.validator is not None else None
    parts = [str(part) for part in error.absolute_path]
    if keyword == "required":
        match = _REQUIRED_MESSAGE_RE.match(error.message)
        if match is not None:
            parts.append(match.group("name"))
            message = f"must have required property '{match.group('name')}'"
        else:
            message = error.message
    elif keyword == "type":
        expected = error.validator_value if isinstance(error.validator_value, list) else [error.validator_value]
        message = "must be " + ",".join(str(name) for name in expected if name != "null")
    elif keyword == "format":
        message = f'must match format "{error.validator_value}"'
    elif keyword == "enum":
        message = "must be equal to one of the allowed values"
    elif keyword == "pattern":
        message = f'must match pattern "{error.validator_value}"'
    else:
        message = error.message
    path = "".join("/" + escape_pointer_segment(part) for part in parts)
    return ValidationIssue(message=message, path=path, keyword=keyword, line=line)


def escape_pointer_segment(segment: str) -> str:
    """Escape one reference token for a JSON pointer (RFC 6901)."""

    return segment.replace("~", "~0").replace("/", "~1")


def pointer_segments(pointer: str) -> list[str]:
    """Split a JSON pointer into its unescaped reference tokens. ``""`` points at the whole document."""

    if not pointer:
        return []
    return [part.replace("~1", "/").replace("~0", "~") for part in pointer.removeprefix("/").split("/")]
