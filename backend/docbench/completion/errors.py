"""Classification of failed completion calls into operator-facing categories."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_STATUS_IN_MESSAGE_RE = re.compile(r"error: (\d{3})")


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    category: str
    is_retryable: bool
    guidance: list[str] = field(default_factory=list)

    def tagged(self, message: str) -> str:
        """Prefix ``message`` with the category, as stored on a failed output."""

        return f"[{self.category}] {message}"


def extract_status_code(message: str) -> int | None:
    match = _STATUS_IN_MESSAGE_RE.search(message)
    return int(match.group(1)) if match else None


def classify_completion_error(error: BaseException | str, status_code: int | None = None) -> ErrorClassification:
    """Map an exception (and optional HTTP status) to a category, retry flag and guidance.

    Checks run in a fixed order so that, for example, a 429 whose body mentions a
    timeout is still reported as a rate limit.
    """

    message = str(error)
    if status_code is None:
        status_code = getattr(error, "status_code", None) or extract_status_code(message)
    lowered = message.lower()

    if status_code in (401, 403) or "authentication" in lowered or "unauthorized" in lowered:
        return ErrorClassification(
            category="Authentication Error",
            is_retryable=False,
            guidance=[
                "Authentication Failed: Check your OpenRouter API key",
                "Verify OPENROUTER_API_KEY environment variable is set correctly",
                "Check API key at: https://openrouter.ai/keys",
            ],
        )

    if status_code == 429 or "rate limit" in lowered or "too many requests" in lowered:
        return ErrorClassification(
            category="Rate Limit",
            is_retryable=True,
            guidance=[
                "Rate Limit Exceeded: Too many requests",
                "Wait a few moments and try again",
                "Consider upgrading your OpenRouter plan for higher limits",
            ],
        )

    if "timeout" in lowered or "timed out" in lowered or "deadline exceeded" in lowered:
        return ErrorClassification(
            category="Timeout",
            is_retryable=True,
            guidance=[
                "Model Timeout: Request took too long",
                "This model may be slow or overloaded",
                "Try a faster model or reduce input size",
            ],
        )

    model_missing = "model" in lowered and (
        "not found" in lowered or "does not exist" in lowered or "invalid model" in lowered
    )
    if status_code == 404 or model_missing:
        return ErrorClassification(
            category="Invalid Model Name",
            is_retryable=False,
            guidance=[
                "Model Not Found: Model name does not exist on OpenRouter",
                "Check model name in database matches OpenRouter API format",
                "View available models: https://openrouter.ai/models",
                'Expected format: "provider/model-name" (e.g., "meta-llama/llama-3.3-70b-instruct")',
            ],
        )

    if status_code == 503 or "unavailable" in lowered or "overloaded" in lowered or "capacity" in lowered:
        return ErrorClassification(
            category="Model Unavailable",
            is_retryable=True,
            guidance=[
                "Model Temporarily Unavailable: Model is down or overloaded",
                "This is usually temporary - try again in a few minutes",
                "Try a different model as alternative",
            ],
        )

    if status_code == 400:
        if "parameter" in lowered or "invalid" in lowered:
            guidance = [
                "Invalid Request Parameters",
                "This model may not support the requested parameters (e.g., JSON mode)",
                "Try a different model or remove special parameters",
                f"Details: {message}",
            ]
        else:
            guidance = [
                f"Bad Request: {message}",
                "Check request format and model compatibility",
                "Try a different model",
            ]
        return ErrorClassification(category="Invalid Request", is_retryable=False, guidance=guidance)

    if status_code is not None and status_code >= 500:
        return ErrorClassification(
            category="Server Error",
            is_retryable=True,
            guidance=[
                "Server Error: OpenRouter API is experiencing issues",
                "This is temporary - try again in a few minutes",
                "Check OpenRouter status: https://status.openrouter.ai",
            ],
        )

    if "network" in lowered or "connection" in lowered or "fetch failed" in lowered:
        return ErrorClassification(
            category="Network Error",
            is_retryable=True,
            guidance=[
                "Network Error: Cannot reach OpenRouter API",
                "Check your internet connection",
                "Verify OpenRouter API is accessible",
                "This may be temporary - try again",
            ],
        )

    return ErrorClassification(
        category="Unknown Error",
        is_retryable=False,
        guidance=[
            f"Unexpected Error: {message}",
            "Check the server logs for more details",
            "Try a different model",
        ],
    )
