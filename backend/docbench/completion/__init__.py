"""Completion provider client and failure classification."""

from docbench.completion.client import (
    CompletionClient,
    CompletionConfigError,
    CompletionError,
    CompletionResult,
    OpenRouterChatClient,
    get_default_completion_client,
)
from docbench.completion.errors import ErrorClassification, classify_completion_error, extract_status_code

__all__ = [
    "CompletionClient",
    "CompletionConfigError",
    "CompletionError",
    "CompletionResult",
    "ErrorClassification",
    "OpenRouterChatClient",
    "classify_completion_error",
    "extract_status_code",
    "get_default_completion_client",
]
