"""Send one real completion through OpenRouter and validate it against a tiny schema.

Usage (from repo root):
    python backend/scripts/smoke_completion.py --model openai/gpt-4o-mini
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from docbench.completion.client import get_default_completion_client
from docbench.scoring import calculate_quality
from docbench.validation import generate_guidance, validate_response

SMOKE_SCHEMA = {
    "type": "object",
    "required": ["company", "year"],
    "properties": {"company": {"type": "string"}, "year": {"type": "integer"}},
}

SMOKE_TEXT = "Acme Rocket Works was founded in 1947 in Tucson and still builds model rockets today."


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one completion end to end.")
    parser.add_argument("--model", default="openai/gpt-4o-mini")
    parser.add_argument("--json-mode", action="store_true")
    args = parser.parse_args()

    client = get_default_completion_client()
    result = client.complete(
        args.model,
        "Return only a JSON object with the keys company and year.",
        f"Extract the company name and founding year.\n\nDocument text:\n{SMOKE_TEXT}",
        json_mode=args.json_mode,
    )
    validation = validate_response(result.text, SMOKE_SCHEMA)
    report = calculate_quality(result.text, validation.parsed_data) if validation.json_valid else None
    print(
        json.dumps(
            {
                "raw": result.text,
                "tokens": {"prompt": result.prompt_tokens, "completion": result.completion_tokens},
                "validation": validation.details(),
                "errors": validation.error_list(),
                "guidance": generate_guidance(validation, SMOKE_SCHEMA),
                "quality": report.as_dict() if report else None,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
