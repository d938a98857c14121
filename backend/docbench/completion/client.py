"""Chat-completion client used to run extraction prompts against hosted models."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from docbench.config import Settings, get_settings


class CompletionError(RuntimeError):
    """Raised when a completion request fails. ``status_code`` is set for HTTP failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CompletionConfigError(CompletionError):
    """Raised when the completion provider is not configured."""


@dataclass(slots=True)
class CompletionResult:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionClient(Protocol):
    """Protocol for pluggable completion clients used by the batch orchestrator."""

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
    ) -> CompletionResult:
        """Return the raw completion text and token usage for one prompt."""


@dataclass(slots=True)
class OpenRouterChatClient:
    """Minimal OpenRouter Chat Completions client using stdlib HTTP."""

    api_key: str
    base_url: str = "https://openrouter.ai/api/v1"
    timeout_seconds: int = 120
    temperature: float = 0.1
    max_tokens: int = 4000
    app_url: str | None = None
    app_title: str | None = None

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
    ) -> CompletionResult:
        """Call OpenRouter and return the assistant message text verbatim."""

        payload: dict[str, Any] = {
            "model": model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.app_url:
            headers["HTTP-Referer"] = self.app_url
        if self.app_title:
            headers["X-Title"] = self.app_title

        req = urllib_request.Request(
            url=f"{self.base_url.rstrip('/')}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers=headers,
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise CompletionError(f"OpenRouter API error: {exc.code} - {detail}", status_code=exc.code) from exc
        except urllib_error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise CompletionError(f"OpenRouter request timed out after {self.timeout_seconds}s") from exc
            raise CompletionError(f"OpenRouter network error: connection failed ({exc.reason})") from exc
        except TimeoutError as exc:
            raise CompletionError(f"OpenRouter request timed out after {self.timeout_seconds}s") from exc

        return _parse_completion(raw)


def _parse_completion(raw: str) -> CompletionResult:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CompletionError("OpenRouter returned a non-JSON response body") from exc

    provider_error = decoded.get("error") if isinstance(decoded, dict) else None
    if isinstance(provider_error, dict):
        code = provider_error.get("code")
        status_code = code if isinstance(code, int) else None
        raise CompletionError(
            f"OpenRouter API error: {code} - {provider_error.get('message', 'unknown error')}",
            status_code=status_code,
        )

    try:
        content = decoded["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise CompletionError("OpenRouter returned an unexpected response shape") from exc
    if not isinstance(content, str):
        raise CompletionError("OpenRouter returned an empty completion")

    usage = decoded.get("usage") or {}
    return CompletionResult(
        text=content,
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("completion_tokens") or 0),
    )


def get_default_completion_client(
    settings: Settings | None = None,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> CompletionClient:
    """Build the configured completion client. Sampling defaults come from settings unless overridden."""

    settings = settings or get_settings()
    if not settings.openrouter_api_key:
        raise CompletionConfigError(
            "OPENROUTER_API_KEY is not configured. Set it in backend/.env."
        )
    return OpenRouterChatClient(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        timeout_seconds=settings.openrouter_timeout_seconds,
        temperature=settings.completion_temperature if temperature is None else temperature,
        max_tokens=settings.completion_max_tokens if max_tokens is None else max_tokens,
        app_url=settings.openrouter_app_url,
        app_title=settings.openrouter_app_title,
    )
