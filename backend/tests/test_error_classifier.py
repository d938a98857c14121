"""Unit tests for completion error classification."""

import unittest

from docbench.completion import CompletionError
from docbench.completion.errors import classify_completion_error, extract_status_code


class ClassifyCompletionErrorTests(unittest.TestCase):
    def test_status_code_attribute_wins(self) -> None:
        error = CompletionError("OpenRouter API error: 429 - rate limited", status_code=429)

        result = classify_completion_error(error)

        self.assertEqual(result.category, "Rate Limit")
        self.assertTrue(result.is_retryable)
        self.assertEqual(result.tagged(str(error)), "[Rate Limit] OpenRouter API error: 429 - rate limited")

    def test_status_code_parsed_from_message(self) -> None:
        self.assertEqual(extract_status_code("OpenRouter API error: 503 - down"), 503)
        self.assertIsNone(extract_status_code("no code here"))
        self.assertEqual(classify_completion_error("OpenRouter API error: 503 - down").category, "Model Unavailable")

    def test_rate_limit_checked_before_timeout(self) -> None:
        result = classify_completion_error("upstream timeout", status_code=429)

        self.assertEqual(result.category, "Rate Limit")

    def test_authentication(self) -> None:
        result = classify_completion_error("OpenRouter API error: 401 - bad key")

        self.assertEqual(result.category, "Authentication Error")
        self.assertFalse(result.is_retryable)

    def test_timeout(self) -> None:
        result = classify_completion_error(TimeoutError("OpenRouter request timed out"))

        self.assertEqual(result.category, "Timeout")
        self.assertTrue(result.is_retryable)

    def test_invalid_model(self) -> None:
        self.assertEqual(classify_completion_error("model not found: foo/bar").category, "Invalid Model Name")
        self.assertEqual(classify_completion_error("nope", status_code=404).category, "Invalid Model Name")

    def test_bad_request_variants(self) -> None:
        invalid_param = classify_completion_error("invalid parameter response_format", status_code=400)
        other = classify_completion_error("prompt too long", status_code=400)

        self.assertEqual(invalid_param.category, "Invalid Request")
        self.assertEqual(invalid_param.guidance[-1], "Details: invalid parameter response_format")
        self.assertEqual(other.guidance[0], "Bad Request: prompt too long")

    def test_server_error(self) -> None:
        result = classify_completion_error("boom", status_code=502)

        self.assertEqual(result.category, "Server Error")
        self.assertTrue(result.is_retryable)

    def test_network_error(self) -> None:
        result = classify_completion_error("OpenRouter network error: connection failed (refused)")

        self.assertEqual(result.category, "Network Error")
        self.assertTrue(result.is_retryable)

    def test_unknown_error(self) -> None:
        result = classify_completion_error(ValueError("something odd"))

        self.assertEqual(result.category, "Unknown Error")
        self.assertFalse(result.is_retryable)
        self.assertEqual(result.guidance[0], "Unexpected Error: something odd")


if __name__ == "__main__":
    unittest.main()
