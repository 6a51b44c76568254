"""
Stage Invoker.

Runs one stage handler and normalizes whatever happens into a StageResult.
This is the only place exceptions from stage work are turned into data;
nothing above it sees a raw exception from a handler.
"""

import time
from typing import Any, Dict, Optional

from content_pipeline.artifacts.models import StageResult
from content_pipeline.errors import InvalidStatusError, ToolExecutionError, classify_error
from content_pipeline.mocks.gateway import MockGateway
from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.utils.retry import RetryPolicyEngine
from content_pipeline.utils.structured_logging import (
    clear_trace_context,
    get_logger,
    set_trace_context,
)
from content_pipeline.utils.tracing import generate_trace_id

logger = get_logger("stage_invoker")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class StageInvoker:
    """
    Executes stage handlers under the retry engine, or serves canned
    responses when the mock gateway says so.

    Usage:
        invoker = StageInvoker({"skeleton": SkeletonStage(...)}, RetryPolicyEngine())
        result = await invoker.invoke("skeleton", artifact_id, {"artifact_type": "blog"})
    """

    def __init__(
        self,
        handlers: Dict[str, StageHandler],
        retry_engine: RetryPolicyEngine,
        mock_gateway: Optional[MockGateway] = None,
    ):
        self.handlers = dict(handlers)
        self.retry_engine = retry_engine
        self.mock_gateway = mock_gateway

    def has_handler(self, stage_id: str) -> bool:
        return stage_id in self.handlers

    def register(self, stage_id: str, handler: StageHandler):
        self.handlers[stage_id] = handler

    async def invoke(self, stage_id: str, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        """
        Run a stage and return its normalized result. Never raises for a
        failure inside the stage.
        """
        trace_id = params.get("trace_id") or generate_trace_id(stage_id)
        params = {**params, "trace_id": trace_id}
        variant = str(params.get("artifact_type", "default"))
        start = time.perf_counter()

        set_trace_context(trace_id=trace_id, artifact_id=artifact_id, stage=stage_id)
        try:
            if self.mock_gateway is not None and self.mock_gateway.should_mock(stage_id):
                return await self._invoke_mock(stage_id, variant, params, start)

            handler = self.handlers.get(stage_id)
            if handler is None:
                error = InvalidStatusError(artifact_id, str(params.get("status", "unknown")))
                logger.error("No handler registered for stage", error=error.message)
                return StageResult.failure(error, trace_id, _elapsed_ms(start))

            logger.info("Stage started", variant=variant)

            def on_retry(attempt: int, delay_ms: float, error: BaseException):
                logger.warning(
                    "Stage retry scheduled",
                    attempt=attempt,
                    delay_ms=round(delay_ms, 1),
                    error=str(error),
                )

            try:
                result = await self.retry_engine.with_retry(
                    lambda: handler.handle(artifact_id, params),
                    on_retry=on_retry,
                )
            except Exception as e:
                error = classify_error(e)
                duration_ms = _elapsed_ms(start)
                logger.error(
                    "Stage failed",
                    category=error.category.value,
                    recoverable=error.recoverable,
                    error=error.message,
                    duration_ms=duration_ms,
                )
                return StageResult.failure(error, trace_id, duration_ms)

            if not isinstance(result, StageResult):
                error = ToolExecutionError(
                    f"Stage '{stage_id}' returned {type(result).__name__} instead of a StageResult"
                )
                return StageResult.failure(error, trace_id, _elapsed_ms(start))

            result = result.model_copy(update={
                "trace_id": result.trace_id or trace_id,
                "duration_ms": _elapsed_ms(start),
            })

            if result.success:
                logger.info(
                    "Stage completed",
                    duration_ms=result.duration_ms,
                    item_errors=len(result.errors),
                )
                if self.mock_gateway is not None:
                    self.mock_gateway.capture_real_response(stage_id, variant, params, result)
            else:
                logger.warning(
                    "Stage reported failure",
                    duration_ms=result.duration_ms,
                    category=result.error.category.value if result.error else None,
                )
            return result
        finally:
            clear_trace_context("trace_id", "artifact_id", "stage")

    async def _invoke_mock(
        self,
        stage_id: str,
        variant: str,
        params: Dict[str, Any],
        start: float,
    ) -> StageResult:
        try:
            result = await self.mock_gateway.get_mock_response(stage_id, variant, params)
        except Exception as e:
            error = classify_error(e)
            logger.error("Mock response failed", error=error.message)
            return StageResult.failure(error, params["trace_id"], _elapsed_ms(start))

        logger.info("Stage served from mock", variant=variant)
        return result.model_copy(update={"duration_ms": _elapsed_ms(start), "mocked": True})
