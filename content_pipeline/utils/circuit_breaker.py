"""
Circuit Breaker Pattern Implementation.

Provides protection against cascading failures by temporarily
disabling calls to failing dependencies.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from content_pipeline.errors import CircuitOpenError
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("circuit_breaker")

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, calls pass through
    OPEN = "open"          # Failures exceeded threshold, calls blocked
    HALF_OPEN = "half_open"  # One trial call allowed to test recovery


@dataclass
class CircuitBreakerState:
    """Guard state for one dependency."""
    failure_count: int = 0
    last_failure_timestamp: Optional[float] = None
    state: CircuitState = CircuitState.CLOSED


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None


class CircuitBreaker:
    """
    Circuit breaker guarding one downstream dependency.

    Transitions:
        closed -> open        failure_count reaches failure_threshold
        open -> half_open     reset_timeout_ms elapsed since the last failure
        half_open -> closed   the single trial call succeeds
        half_open -> open     the trial call fails

    Calls admitted before the circuit opened may complete while it is open
    or half-open. Their outcomes count in the stats but never move the state.

    Usage:
        cb = CircuitBreaker("generation", failure_threshold=3, reset_timeout_ms=60000)
        result = await cb.execute(lambda: provider.generate(prompt, options))
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock

        self._state = CircuitBreakerState()
        self._stats = CircuitStats()
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

        # Recent failures for analysis (keep last 100)
        self._recent_failures: deque = deque(maxlen=100)

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    def get_state(self) -> CircuitBreakerState:
        """Snapshot of the guard state."""
        return CircuitBreakerState(
            failure_count=self._state.failure_count,
            last_failure_timestamp=self._state.last_failure_timestamp,
            state=self._state.state,
        )

    def _elapsed_ms(self) -> float:
        if self._state.last_failure_timestamp is None:
            return float("inf")
        return (self._clock() - self._state.last_failure_timestamp) * 1000

    def _transition_to(self, new_state: CircuitState):
        """Transition to a new state."""
        old_state = self._state.state
        if old_state == new_state:
            return
        self._state.state = new_state
        self._stats.state_changes += 1

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            "Circuit breaker state change",
            name=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self._state.failure_count,
        )

    def _admit(self) -> bool:
        """
        Decide whether a call may proceed, moving open -> half_open when the
        cooldown has elapsed. Returns True if this call is the half-open trial.
        """
        if self._state.state == CircuitState.OPEN:
            if self._elapsed_ms() < self.reset_timeout_ms:
                self._stats.rejected_calls += 1
                retry_in = int(self.reset_timeout_ms - self._elapsed_ms())
                raise CircuitOpenError(self.name, retry_in_ms=retry_in)
            self._transition_to(CircuitState.HALF_OPEN)

        if self._state.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self._stats.rejected_calls += 1
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True
            return True

        return False

    def _record_success(self, is_trial: bool = False):
        self._stats.total_calls += 1
        self._stats.successful_calls += 1
        self._stats.last_success_time = datetime.utcnow()
        # Only the trial call settles a half-open circuit.
        if is_trial:
            self._state.failure_count = 0
            self._transition_to(CircuitState.CLOSED)
        elif self._state.state == CircuitState.CLOSED:
            self._state.failure_count = 0

    def _record_failure(self, exception: BaseException, is_trial: bool = False):
        self._stats.total_calls += 1
        self._stats.failed_calls += 1
        self._stats.last_failure_time = datetime.utcnow()

        self._recent_failures.append({
            "time": datetime.utcnow().isoformat(),
            "error": str(exception)[:200],
            "type": type(exception).__name__
        })

        if is_trial:
            self._state.failure_count += 1
            self._state.last_failure_timestamp = self._clock()
            self._transition_to(CircuitState.OPEN)
        elif self._state.state == CircuitState.CLOSED:
            self._state.failure_count += 1
            self._state.last_failure_timestamp = self._clock()
            if self._state.failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: without calling ``func`` while the circuit is open
                or a half-open trial is already in flight
        """
        async with self._lock:
            is_trial = self._admit()

        try:
            result = await func()
        except Exception as e:
            async with self._lock:
                if is_trial:
                    self._trial_in_flight = False
                self._record_failure(e, is_trial)
            raise

        async with self._lock:
            if is_trial:
                self._trial_in_flight = False
            self._record_success(is_trial)
        return result

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._transition_to(CircuitState.CLOSED)
        self._state = CircuitBreakerState()
        self._stats = CircuitStats()
        self._trial_in_flight = False
        self._recent_failures.clear()
        logger.info("Circuit breaker manually reset", name=self.name)

    def get_metrics(self) -> Dict[str, Any]:
        """Get metrics for monitoring."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._state.failure_count,
            "total_calls": self._stats.total_calls,
            "successful_calls": self._stats.successful_calls,
            "failed_calls": self._stats.failed_calls,
            "rejected_calls": self._stats.rejected_calls,
            "state_changes": self._stats.state_changes,
            "last_failure": self._stats.last_failure_time.isoformat() if self._stats.last_failure_time else None,
            "last_success": self._stats.last_success_time.isoformat() if self._stats.last_success_time else None,
            "recent_failures": list(self._recent_failures)[-5:],
            "config": {
                "failure_threshold": self.failure_threshold,
                "reset_timeout_ms": self.reset_timeout_ms,
            }
        }


class CircuitBreakerRegistry:
    """
    Owns one breaker per guarded dependency for the lifetime of the process.

    Constructed once at startup and passed to whatever needs a breaker, so a
    dependency tripped during one stage stays tripped for every later stage.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        """Get the breaker for a dependency, creating it on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                failure_threshold=self.failure_threshold,
                reset_timeout_ms=self.reset_timeout_ms,
                clock=self._clock,
            )
            self._breakers[name] = breaker
        return breaker

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get metrics for all registered circuit breakers."""
        return {name: cb.get_metrics() for name, cb in self._breakers.items()}

    def health(self) -> Dict[str, Any]:
        """Health summary: unhealthy while any breaker is open."""
        metrics = self.get_all_metrics()
        unhealthy = [
            name for name, m in metrics.items()
            if m["state"] == CircuitState.OPEN.value
        ]
        return {
            "status": "unhealthy" if unhealthy else "healthy",
            "open_circuits": unhealthy,
            "circuits": metrics
        }
