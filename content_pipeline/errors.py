"""
Pipeline Error Taxonomy.

A closed set of error categories, one exception variant per category, and the
single classifier that maps arbitrary exceptions onto that set.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type


class ErrorCategory(str, Enum):
    """Error categories shared by every pipeline component."""
    # Pipeline / artifact errors
    INVALID_STATUS = "INVALID_STATUS"
    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # Stage errors
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    RESEARCH_NOT_FOUND = "RESEARCH_NOT_FOUND"

    # Provider errors
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"
    AI_RATE_LIMIT = "AI_RATE_LIMIT"
    AI_CONTENT_FILTER = "AI_CONTENT_FILTER"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"


@dataclass(frozen=True)
class ErrorDefinition:
    """Static behaviour of an error category."""
    recoverable: bool
    retryable: bool


ERROR_DEFINITIONS: Dict[ErrorCategory, ErrorDefinition] = {
    ErrorCategory.INVALID_STATUS: ErrorDefinition(recoverable=False, retryable=False),
    ErrorCategory.ARTIFACT_NOT_FOUND: ErrorDefinition(recoverable=False, retryable=False),
    ErrorCategory.CONCURRENT_MODIFICATION: ErrorDefinition(recoverable=False, retryable=False),
    ErrorCategory.TOOL_EXECUTION_FAILED: ErrorDefinition(recoverable=True, retryable=True),
    ErrorCategory.TOOL_TIMEOUT: ErrorDefinition(recoverable=True, retryable=True),
    ErrorCategory.RESEARCH_NOT_FOUND: ErrorDefinition(recoverable=False, retryable=False),
    ErrorCategory.AI_PROVIDER_ERROR: ErrorDefinition(recoverable=True, retryable=True),
    # Retrying a rate limit immediately only burns quota
    ErrorCategory.AI_RATE_LIMIT: ErrorDefinition(recoverable=True, retryable=False),
    ErrorCategory.AI_CONTENT_FILTER: ErrorDefinition(recoverable=False, retryable=False),
    ErrorCategory.CIRCUIT_OPEN: ErrorDefinition(recoverable=True, retryable=False),
}


class PipelineError(Exception):
    """
    Base class for all pipeline errors.

    Subclasses pin ``category``; ``recoverable`` and ``retryable`` default to the
    category definition and may be overridden per instance.
    """

    category: ErrorCategory = ErrorCategory.TOOL_EXECUTION_FAILED

    def __init__(
        self,
        message: str,
        *,
        recoverable: Optional[bool] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        definition = ERROR_DEFINITIONS[self.category]
        self.recoverable = definition.recoverable if recoverable is None else recoverable
        self.retryable = definition.retryable if retryable is None else retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


class InvalidStatusError(PipelineError):
    """A stage was requested for an artifact whose status does not allow it."""

    category = ErrorCategory.INVALID_STATUS

    def __init__(self, artifact_id: str, status: str, expected: Optional[List[str]] = None):
        message = f"Artifact {artifact_id} has status '{status}'"
        if expected:
            message += f", expected one of: {', '.join(expected)}"
        super().__init__(
            message,
            details={"artifact_id": artifact_id, "status": status, "expected": expected or []},
        )
        self.artifact_id = artifact_id
        self.status = status
        self.expected = expected or []


class ArtifactNotFoundError(PipelineError):
    """The artifact does not exist in the store."""

    category = ErrorCategory.ARTIFACT_NOT_FOUND

    def __init__(self, artifact_id: str):
        super().__init__(f"Artifact {artifact_id} not found", details={"artifact_id": artifact_id})
        self.artifact_id = artifact_id


class ConcurrentModificationError(PipelineError):
    """Stored status no longer matches what the stage read at dispatch time."""

    category = ErrorCategory.CONCURRENT_MODIFICATION

    def __init__(self, artifact_id: str, expected_status: str, actual_status: str):
        super().__init__(
            f"Artifact {artifact_id} moved from '{expected_status}' to '{actual_status}' "
            f"while a stage was running",
            details={
                "artifact_id": artifact_id,
                "expected_status": expected_status,
                "actual_status": actual_status,
            },
        )
        self.artifact_id = artifact_id
        self.expected_status = expected_status
        self.actual_status = actual_status


class ToolExecutionError(PipelineError):
    """
    Catch-all for failures inside a stage handler.
    Retryable only when the underlying cause is retryable.
    """

    category = ErrorCategory.TOOL_EXECUTION_FAILED

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        *,
        retryable: Optional[bool] = None,
        recoverable: Optional[bool] = None,
    ):
        if retryable is None and cause is not None:
            retryable = isinstance(cause, PipelineError) and cause.retryable
        super().__init__(message, retryable=retryable, recoverable=recoverable)
        self.cause = cause


class StageTimeoutError(PipelineError):
    """A stage or provider call timed out."""

    category = ErrorCategory.TOOL_TIMEOUT


class ResearchNotFoundError(PipelineError):
    """A downstream stage found no research to work from."""

    category = ErrorCategory.RESEARCH_NOT_FOUND


class ProviderError(PipelineError):
    """The generation provider failed (transport error, 5xx, malformed reply)."""

    category = ErrorCategory.AI_PROVIDER_ERROR


class RateLimitError(PipelineError):
    """The generation provider rejected the call for rate limiting."""

    category = ErrorCategory.AI_RATE_LIMIT

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__(
            f"Rate limit exceeded. Retry after: {retry_after}s",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class ContentFilterError(PipelineError):
    """The generation provider refused the content."""

    category = ErrorCategory.AI_CONTENT_FILTER


class CircuitOpenError(PipelineError):
    """Raised when attempting to call through an open circuit."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(self, name: str, retry_in_ms: Optional[int] = None):
        super().__init__(
            f"Circuit '{name}' is open",
            details={"circuit": name, "retry_in_ms": retry_in_ms},
        )
        self.name = name
        self.retry_in_ms = retry_in_ms


# Builtin exceptions with a natural home in the taxonomy
_BUILTIN_CATEGORIES: Dict[Type[BaseException], Type[PipelineError]] = {
    asyncio.TimeoutError: StageTimeoutError,
    TimeoutError: StageTimeoutError,
    ConnectionError: ProviderError,
}


def classify_error(exc: BaseException) -> PipelineError:
    """
    Map any exception onto the closed taxonomy.

    Pipeline errors pass through untouched; known builtins map to their
    variant; everything else becomes a non-retryable ToolExecutionError.
    """
    if isinstance(exc, PipelineError):
        return exc

    for exc_type, variant in _BUILTIN_CATEGORIES.items():
        if isinstance(exc, exc_type):
            return variant(str(exc) or exc_type.__name__)

    return ToolExecutionError(str(exc) or type(exc).__name__, cause=exc)


@dataclass
class RetryPolicy:
    """Retry behaviour for calls guarded by the retry engine."""
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    retryable_categories: List[ErrorCategory] = field(default_factory=lambda: [
        ErrorCategory.TOOL_EXECUTION_FAILED,
        ErrorCategory.TOOL_TIMEOUT,
        ErrorCategory.AI_PROVIDER_ERROR,
    ])


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_retryable(error: BaseException, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> bool:
    """Check whether an error should be retried under a policy."""
    classified = classify_error(error)
    return classified.category in policy.retryable_categories and classified.retryable
