"""Stage orchestration: transitions, invocation, and the state machine."""

from content_pipeline.pipeline.invoker import StageInvoker
from content_pipeline.pipeline.state_machine import (
    Checkpoint,
    PipelineProgress,
    PipelineRun,
    PipelineStateMachine,
)
from content_pipeline.pipeline.transitions import GATES, STAGE_CONFIG, TERMINAL, TRANSITIONS, StageConfig

__all__ = [
    "StageInvoker",
    "Checkpoint",
    "PipelineProgress",
    "PipelineRun",
    "PipelineStateMachine",
    "GATES",
    "STAGE_CONFIG",
    "TERMINAL",
    "TRANSITIONS",
    "StageConfig",
]
