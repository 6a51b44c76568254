"""
Structured logging utility - Wrapper around structlog for consistent logging.
Provides a simple interface to get logger instances with context.
"""

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars, unbind_contextvars
from typing import Optional


class EnhancedLogger:
    """
    Enhanced logger wrapper that adds pipeline-specific logging methods.
    Wraps structlog's bound logger with additional methods.
    """

    def __init__(self, logger, name: str = None):
        self._logger = logger
        self._name = name

    def __getattr__(self, name):
        """Delegate attribute access to the wrapped logger."""
        return getattr(self._logger, name)

    def status_change(
        self,
        artifact_id: str,
        previous_status: str,
        new_status: str,
        title: Optional[str] = None,
    ):
        """
        Log an artifact status change with structured data.

        Args:
            artifact_id: Artifact whose status moved
            previous_status: Status before the change
            new_status: Status after the change
            title: Artifact title, if known
        """
        self._logger.info(
            "Artifact status changed",
            event_type="status_change",
            artifact_id=artifact_id,
            title=title or "Untitled",
            previous_status=previous_status,
            new_status=new_status,
        )

    def generation_call(
        self,
        provider: str,
        model: str,
        prompt_tokens: int,
        latency_ms: float,
        success: bool,
        error: Optional[str] = None
    ):
        """
        Log a generation provider call with structured data.

        Args:
            provider: Provider name (e.g., "ollama")
            model: Model name used
            prompt_tokens: Estimated prompt size
            latency_ms: Call latency in milliseconds
            success: Whether the call succeeded
            error: Error message if failed
        """
        # NOTE: structlog reserves the key "event" for the log message.
        event_data = {
            "event_type": "generation_call",
            "provider": provider,
            "model": model,
            "prompt_tokens": prompt_tokens,
            "latency_ms": round(latency_ms, 2),
            "success": success
        }
        if error:
            event_data["error"] = error

        if success:
            self._logger.info("Generation call completed", **event_data)
        else:
            self._logger.error("Generation call failed", **event_data)


def get_logger(name: str = None):
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Enhanced structured logger with context binding
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return EnhancedLogger(logger, name)


def set_trace_context(**kwargs):
    """
    Bind trace-scoped context (trace_id, artifact_id, stage) for logging.
    Every log line emitted in the current task carries these keys.
    """
    bind_contextvars(**kwargs)


def get_trace_context() -> dict:
    """Get the current trace context."""
    return get_contextvars()


def clear_trace_context(*keys: str):
    """Remove the given keys from the trace context."""
    unbind_contextvars(*keys)
