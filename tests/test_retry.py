"""
Retry engine tests.
"""

import pytest
from unittest.mock import AsyncMock

from content_pipeline.errors import (
    CircuitOpenError,
    ContentFilterError,
    ErrorCategory,
    ProviderError,
    RetryPolicy,
)
from content_pipeline.utils.retry import RetryPolicyEngine, calculate_backoff_delay
from tests.fixtures import RecordingSleep


class TestBackoff:
    """Tests for the delay formula."""

    def test_monotonic_without_jitter(self):
        delays = [calculate_backoff_delay(a, 1000, 10000, jitter=False) for a in range(8)]
        assert delays == sorted(delays)
        assert delays[:4] == [1000, 2000, 4000, 8000]
        assert delays[-1] == 10000

    def test_jitter_bounded(self):
        for attempt in range(4):
            delay = calculate_backoff_delay(attempt, 100, 100000)
            base = 100 * (2 ** attempt)
            assert base <= delay <= base + 100

    def test_capped(self):
        assert calculate_backoff_delay(10, 1000, 5000) == 5000


class TestRetryPolicyEngine:
    """Tests for with_retry."""

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.fixture
    def engine(self, sleep):
        return RetryPolicyEngine(RetryPolicy(max_retries=3, base_delay_ms=10, max_delay_ms=50), sleep=sleep)

    @pytest.mark.asyncio
    async def test_first_attempt_has_no_delay(self, engine, sleep):
        func = AsyncMock(return_value="ok")
        assert await engine.with_retry(func) == "ok"
        assert func.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self, engine, sleep):
        func = AsyncMock(side_effect=[ProviderError("down"), ProviderError("down"), "ok"])
        assert await engine.with_retry(func) == "ok"
        assert func.call_count == 3
        assert len(sleep.delays) == 2
        assert all(0.01 <= d <= 0.05 for d in sleep.delays)

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, engine, sleep):
        func = AsyncMock(side_effect=ContentFilterError("blocked"))
        with pytest.raises(ContentFilterError):
            await engine.with_retry(func)
        assert func.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_circuit_open_not_retried(self, engine):
        func = AsyncMock(side_effect=CircuitOpenError("generation"))
        with pytest.raises(CircuitOpenError):
            await engine.with_retry(func)
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_exhausts_retries(self, engine, sleep):
        func = AsyncMock(side_effect=ProviderError("down"))
        with pytest.raises(ProviderError):
            await engine.with_retry(func)
        assert func.call_count == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_policy_override_limits_categories(self, engine):
        policy = RetryPolicy(max_retries=3, base_delay_ms=10, retryable_categories=[ErrorCategory.TOOL_TIMEOUT])
        func = AsyncMock(side_effect=ProviderError("down"))
        with pytest.raises(ProviderError):
            await engine.with_retry(func, policy=policy)
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_hook_cannot_change_flow(self, engine):
        calls = []

        def hook(attempt, delay_ms, error):
            calls.append((attempt, error))
            raise RuntimeError("hook broke")

        func = AsyncMock(side_effect=[ProviderError("down"), "ok"])
        assert await engine.with_retry(func, on_retry=hook) == "ok"
        assert [c[0] for c in calls] == [1]

    @pytest.mark.asyncio
    async def test_unknown_exceptions_not_retried(self, engine):
        func = AsyncMock(side_effect=ValueError("bug"))
        with pytest.raises(ValueError):
            await engine.with_retry(func)
        assert func.call_count == 1

    def test_should_retry(self, engine):
        assert engine.should_retry(ProviderError("down")) is True
        assert engine.should_retry(ContentFilterError("no")) is False
        assert engine.should_retry(CircuitOpenError("ollama")) is False
