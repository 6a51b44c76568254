"""
Retry utilities with exponential backoff.
Handles transient failures gracefully.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from content_pipeline.errors import DEFAULT_RETRY_POLICY, RetryPolicy, classify_error, is_retryable
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("retry")

T = TypeVar('T')

OnRetry = Callable[[int, float, BaseException], Any]


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    jitter: bool = True,
) -> float:
    """
    Delay in milliseconds before the retry that follows ``attempt``.

    Formula: min(base * 2^attempt + uniform(0, base), max)
    """
    delay = base_delay_ms * (2 ** attempt)
    if jitter:
        delay += random.uniform(0, base_delay_ms)
    return min(delay, max_delay_ms)


class RetryPolicyEngine:
    """
    Runs async callables under a retry policy.

    The sleep is the only suspension point the engine adds; it is injectable
    so callers (and tests) can control time.
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy
        self._sleep = sleep

    async def with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> T:
        """
        Execute ``func`` with retry logic.

        Attempt 0 runs immediately. A failure whose category is not retryable
        under the policy, or a failure on the last allowed attempt, is
        re-raised at once.

        Args:
            func: Zero-argument coroutine function to execute
            policy: Overrides the engine's default policy for this call
            on_retry: Observer called as (attempt, delay_ms, error) before each sleep

        Returns:
            The function result

        Raises:
            The last error if retries are exhausted or the error is not retryable
        """
        policy = policy or self.policy
        attempt = 0

        while True:
            try:
                result = await func()
                if attempt > 0:
                    logger.info(
                        "Operation succeeded after retry",
                        attempt=attempt,
                        max_retries=policy.max_retries,
                    )
                return result
            except Exception as e:
                retryable = is_retryable(e, policy)
                category = classify_error(e).category

                logger.warning(
                    f"Attempt {attempt + 1}/{policy.max_retries + 1} failed",
                    error=str(e),
                    retryable=retryable,
                    category=category.value,
                )

                if not retryable or attempt >= policy.max_retries:
                    if retryable:
                        logger.error(
                            "All retry attempts exhausted",
                            error=str(e),
                            attempts=attempt + 1,
                        )
                    raise

                delay_ms = calculate_backoff_delay(attempt, policy.base_delay_ms, policy.max_delay_ms)
                if on_retry is not None:
                    try:
                        on_retry(attempt + 1, delay_ms, e)
                    except Exception as hook_error:
                        logger.warning("Retry hook failed", error=str(hook_error))

                logger.info(
                    "Retrying after backoff",
                    attempt=attempt + 1,
                    delay_ms=round(delay_ms, 1),
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1

    def should_retry(self, error: BaseException, policy: Optional[RetryPolicy] = None) -> bool:
        """Retry predicate for callers that drive their own loop."""
        return is_retryable(error, policy or self.policy)
