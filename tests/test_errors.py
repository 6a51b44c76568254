"""
Error taxonomy tests.
"""

import asyncio

from content_pipeline.errors import (
    CircuitOpenError,
    ConcurrentModificationError,
    ErrorCategory,
    ProviderError,
    RateLimitError,
    ToolExecutionError,
    classify_error,
    is_retryable,
)


class TestClassifyError:
    """Tests for mapping exceptions onto categories."""

    def test_pipeline_errors_pass_through(self):
        error = ProviderError("down")
        assert classify_error(error) is error

    def test_timeouts(self):
        assert classify_error(asyncio.TimeoutError()).category == ErrorCategory.TOOL_TIMEOUT

    def test_connection_errors(self):
        assert classify_error(ConnectionError("refused")).category == ErrorCategory.AI_PROVIDER_ERROR

    def test_unknown_errors_are_tool_failures(self):
        error = classify_error(ValueError("bad value"))
        assert error.category == ErrorCategory.TOOL_EXECUTION_FAILED
        assert error.message == "bad value"
        assert error.retryable is False


class TestErrorFlags:
    """Tests for recoverable / retryable defaults."""

    def test_tool_execution_retryable_follows_cause(self):
        assert ToolExecutionError("wrapped", cause=ProviderError("down")).retryable is True
        assert ToolExecutionError("wrapped", cause=ValueError("bug")).retryable is False
        assert ToolExecutionError("plain").retryable is True

    def test_circuit_open(self):
        error = CircuitOpenError("ollama", retry_in_ms=500)
        assert error.recoverable is True
        assert is_retryable(error) is False
        assert error.details["retry_in_ms"] == 500

    def test_rate_limit(self):
        error = RateLimitError(retry_after=2.0)
        assert error.recoverable is True
        assert is_retryable(error) is False

    def test_concurrent_modification_is_fatal(self):
        error = ConcurrentModificationError("a-1", "draft", "research")
        assert error.recoverable is False
        assert is_retryable(error) is False
        assert error.to_dict()["category"] == "CONCURRENT_MODIFICATION"
