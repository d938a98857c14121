"""Model-assisted authoring of extraction prompts and validation schemas.

Both helpers send one request through a ``CompletionClient``: the optimizer turns
a short description of what to extract into a detailed extraction prompt, and the
schema generator derives a draft-07 JSON Schema from that prompt. A generated
schema is only returned after it parses and passes the draft-07 meta-schema.
"""

from __future__ import annotations

import json
import logging
from time import perf_counter
from typing import Any

from docbench.completion.client import CompletionClient
from docbench.validation import OutputFormat, is_valid_json_schema
from docbench.validation.validator import strip_markdown_fence

logger = logging.getLogger(__name__)


class PromptAssistValidationError(ValueError):
    """Raised when an assist request is missing the text it needs."""


class PromptAssistError(RuntimeError):
    """Raised when the assisting model returns something unusable."""


_OPTIMIZER_SYSTEM_PROMPT = """You write detailed data extraction prompts that are run against several LLMs at once.

Turn the user's short extraction request into a complete prompt of roughly 400-800 words that works \
regardless of the documents' language, domain or layout.

Structure the prompt in these sections:

1. DOCUMENT CONTEXT: one or two sentences on the expected document type and likely languages.
2. REQUIRED FIELDS: for every field give a snake_case name, its type (string, number, boolean, array, \
object or null), what to extract and where it is usually found, and an example value. Describe nested \
structure for objects and the element type and ordering for arrays.
3. FORMAT STANDARDS: ISO 8601 dates (YYYY-MM-DD), numbers as numeric values without currency symbols \
or thousands separators, ISO 4217 currency codes, ISO 639-1 language codes, percentages as decimals, \
trimmed text.
4. EXTRACTION RULES: use null for anything not found and never omit a field or use an empty string; \
keep the original wording when the text is ambiguous; use arrays for repeated values; keep the original \
language unless asked to translate; never invent data.
5. OUTPUT FORMAT: {format_rules}

Example output for format: {format_example}

Return ONLY the optimized prompt, without commentary."""

_OPTIMIZER_FORMAT_RULES = {
    "json": "return a single valid JSON object containing every field (null when missing).",
    "jsonl": (
        "return JSON Lines: one complete JSON object per line, each containing every field (null when missing)."
    ),
}
_OPTIMIZER_FORMAT_EXAMPLES = {
    "json": '{"contract_name": "string", "start_date": "YYYY-MM-DD", "total_amount": 1234567}',
    "jsonl": (
        '{"contract_name": "Example", "start_date": "2024-01-01"}\n'
        '{"contract_name": "Another", "start_date": "2024-02-01"}'
    ),
}

_SCHEMA_SYSTEM_PROMPT = """You write JSON Schema (draft-07) documents for validating extraction output.

Rules:
1. The root is "type": "object".
2. Every field named in the extraction prompt appears under "properties" with a "description".
3. Use the types string, number, boolean, array, object and null; nested objects get their own \
"properties" and arrays an "items" schema.
4. Dates are "type": "string" with "format": "date".
5. List only mandatory fields in "required". Required fields have a single type; optional fields \
accept null through a type array such as ["string", "null"].

{format_note}

Example:
{{"type": "object", "properties": {{"contract_name": {{"type": "string", "description": "Contract title"}}, \
"start_date": {{"type": ["string", "null"], "format": "date", "description": "Start date (YYYY-MM-DD)"}}, \
"total_amount": {{"type": ["number", "null"], "description": "Total value as a number"}}}}, \
"required": ["contract_name"]}}

Return ONLY the JSON Schema object, without markdown or explanations."""

_SCHEMA_FORMAT_NOTES = {
    "json": "The schema validates a single JSON object.",
    "jsonl": "The schema validates each line of a JSON Lines response on its own.",
}


def optimize_prompt(client: CompletionClient, model: str, user_prompt: str, output_format: OutputFormat) -> str:
    """Expand a short extraction request into a detailed extraction prompt."""

    if not user_prompt.strip():
        raise PromptAssistValidationError("user_prompt is required")

    system_prompt = _OPTIMIZER_SYSTEM_PROMPT.format(
        format_rules=_OPTIMIZER_FORMAT_RULES[output_format],
        format_example=_OPTIMIZER_FORMAT_EXAMPLES[output_format],
    )
    started = perf_counter()
    result = client.complete(model, system_prompt, user_prompt)
    optimized = result.text.strip()
    if not optimized:
        raise PromptAssistError("No optimized prompt returned by the model")

    logger.info(
        "assist.prompt_optimized model=%s format=%s chars=%d elapsed_ms=%.2f",
        model,
        output_format,
        len(optimized),
        (perf_counter() - started) * 1000.0,
    )
    return optimized


def generate_json_schema(
    client: CompletionClient,
    model: str,
    user_prompt: str,
    optimized_prompt: str,
    output_format: OutputFormat,
) -> dict[str, Any]:
    """Ask the model for a draft-07 schema matching the prompts and return it once it checks out."""

    if not user_prompt.strip():
        raise PromptAssistValidationError("user_prompt is required")
    if not optimized_prompt.strip():
        raise PromptAssistValidationError("optimized_prompt is required")

    system_prompt = _SCHEMA_SYSTEM_PROMPT.format(format_note=_SCHEMA_FORMAT_NOTES[output_format])
    request = (
        f"User's original request:\n{user_prompt}\n\n"
        f"Optimized extraction prompt:\n{optimized_prompt}\n\n"
        "Generate a JSON Schema that validates the expected output structure."
    )
    started = perf_counter()
    result = client.complete(model, system_prompt, request, json_mode=True)
    schema_text, _ = strip_markdown_fence(result.text)
    if not schema_text:
        raise PromptAssistError("No schema returned by the model")

    try:
        schema = json.loads(schema_text)
    except ValueError as exc:
        raise PromptAssistError(f"Failed to parse generated schema as JSON: {exc}") from exc
    if not is_valid_json_schema(schema):
        raise PromptAssistError("Generated schema is not a valid draft-07 JSON Schema")

    logger.info(
        "assist.schema_generated model=%s format=%s properties=%d elapsed_ms=%.2f",
        model,
        output_format,
        len(schema.get("properties") or {}),
        (perf_counter() - started) * 1000.0,
    )
    return schema
