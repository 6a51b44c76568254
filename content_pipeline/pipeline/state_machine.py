"""
Pipeline State Machine.

Owns the artifact status. Resolves the stage bound to the current status,
runs it through the StageInvoker, applies the requested transition with a
compare-and-set, and chains automatically until a gate, a terminal status,
or a failure. A failed required stage rolls the artifact back to the
checkpoint taken before the stage ran.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from content_pipeline.artifacts.models import (
    Artifact,
    ArtifactStatus,
    StageError,
    StageResult,
    StatusTransition,
)
from content_pipeline.artifacts.store import ArtifactStore
from content_pipeline.errors import (
    ErrorCategory,
    InvalidStatusError,
    PipelineError,
)
from content_pipeline.pipeline.invoker import StageInvoker
from content_pipeline.pipeline.transitions import (
    GATES,
    STAGE_CONFIG,
    TERMINAL,
    StageConfig,
    is_valid_transition,
)
from content_pipeline.utils.structured_logging import get_logger
from content_pipeline.utils.tracing import generate_trace_id

logger = get_logger("pipeline")


@dataclass
class Checkpoint:
    """Artifact state captured before a stage runs."""
    status: ArtifactStatus
    content: str
    stage_id: str
    taken_at: float = field(default_factory=time.time)


@dataclass
class PipelineProgress:
    """Snapshot passed to progress callbacks before each stage."""
    artifact_id: str
    trace_id: str
    current_stage: str
    current_status: ArtifactStatus
    completed_stages: List[str]
    stage_index: int
    total_stages: int


@dataclass
class PipelineRun:
    """Outcome of one advance / step / approve call."""
    artifact_id: str
    trace_id: str
    success: bool = False
    duration_ms: int = 0
    stages_completed: List[str] = field(default_factory=list)
    stage_results: Dict[str, StageResult] = field(default_factory=dict)
    optional_failures: List[str] = field(default_factory=list)
    waiting_for_approval: bool = False
    final_status: Optional[ArtifactStatus] = None
    error: Optional[StageError] = None
    failed_stage: Optional[str] = None
    rolled_back_to: Optional[ArtifactStatus] = None
    rollback_error: Optional[str] = None


ProgressCallback = Callable[[PipelineProgress], Any]


class PipelineStateMachine:
    """
    Drives artifacts through the pipeline.

    Usage:
        machine = PipelineStateMachine(store, invoker)
        run = await machine.advance(artifact_id)
        if run.waiting_for_approval:
            run = await machine.approve(artifact_id)
    """

    def __init__(
        self,
        store: ArtifactStore,
        invoker: StageInvoker,
        stages: Optional[Dict[ArtifactStatus, StageConfig]] = None,
    ):
        self.store = store
        self.invoker = invoker
        self.stages = stages if stages is not None else STAGE_CONFIG
        self._checkpoints: Dict[str, Checkpoint] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def advance(
        self,
        artifact_id: str,
        on_progress: Optional[ProgressCallback] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        """Run stages from the current status until a gate, ready, or a failure."""
        return await self._run(artifact_id, chain=True, on_progress=on_progress, params=params)

    async def step(self, artifact_id: str, params: Optional[Dict[str, Any]] = None) -> PipelineRun:
        """Run exactly one stage without chaining."""
        return await self._run(artifact_id, chain=False, on_progress=None, params=params)

    async def approve(
        self,
        artifact_id: str,
        on_progress: Optional[ProgressCallback] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        """
        External approval of the skeleton. Moves skeleton -> foundations_approval
        and resumes automatic advancement.
        """
        run = PipelineRun(artifact_id=artifact_id, trace_id=generate_trace_id("approve"))
        try:
            artifact = await self.store.get(artifact_id)
            if artifact.status == ArtifactStatus.SKELETON:
                await self._move(artifact, ArtifactStatus.SKELETON, ArtifactStatus.FOUNDATIONS_APPROVAL)
            elif artifact.status != ArtifactStatus.FOUNDATIONS_APPROVAL:
                raise InvalidStatusError(
                    artifact_id,
                    artifact.status.value,
                    [ArtifactStatus.SKELETON.value, ArtifactStatus.FOUNDATIONS_APPROVAL.value],
                )
        except PipelineError as e:
            run.error = StageError.from_exception(e)
            logger.warning("Approval rejected", artifact_id=artifact_id, error=e.message)
            return run

        logger.info("Foundations approved", artifact_id=artifact_id)
        return await self.advance(artifact_id, on_progress=on_progress, params=params)

    async def publish(self, artifact_id: str) -> Artifact:
        """
        Move ready -> published.

        Raises:
            InvalidStatusError: the artifact is not ready
            ConcurrentModificationError: the status changed underneath
        """
        artifact = await self.store.get(artifact_id)
        if artifact.status != ArtifactStatus.READY:
            raise InvalidStatusError(artifact_id, artifact.status.value, [ArtifactStatus.READY.value])
        return await self._move(artifact, ArtifactStatus.READY, ArtifactStatus.PUBLISHED)

    async def record_edit(self, artifact_id: str, content: str) -> Artifact:
        """
        Persist a content edit. Editing a published artifact moves it back
        to ready.
        """
        artifact = await self.store.get(artifact_id)
        new_status = ArtifactStatus.READY if artifact.status == ArtifactStatus.PUBLISHED else None
        updated = await self.store.update(
            artifact_id,
            expected_status=artifact.status,
            status=new_status,
            content=content,
        )
        if new_status is not None:
            logger.status_change(artifact_id, artifact.status.value, new_status.value, title=artifact.title)
        return updated

    def get_checkpoint(self, artifact_id: str) -> Optional[Checkpoint]:
        """Checkpoint of a stage that is running or whose rollback write failed."""
        return self._checkpoints.get(artifact_id)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        artifact_id: str,
        chain: bool,
        on_progress: Optional[ProgressCallback],
        params: Optional[Dict[str, Any]],
    ) -> PipelineRun:
        run = PipelineRun(artifact_id=artifact_id, trace_id=generate_trace_id("pipeline"))
        start = time.perf_counter()

        try:
            artifact = await self.store.get(artifact_id)
        except PipelineError as e:
            run.error = StageError.from_exception(e)
            return await self._finish(run, start, None)

        logger.info(
            "Pipeline run started",
            artifact_id=artifact_id,
            run_trace_id=run.trace_id,
            status=artifact.status.value,
            chain=chain,
        )

        while True:
            status = artifact.status

            if status in GATES:
                run.waiting_for_approval = True
                run.success = True
                logger.info("Artifact waiting for approval", artifact_id=artifact_id, status=status.value)
                break

            config = self.stages.get(status)
            if config is None or not self.invoker.has_handler(config.stage_id):
                expected = [s.value for s, c in self.stages.items() if self.invoker.has_handler(c.stage_id)]
                error = InvalidStatusError(artifact_id, status.value, expected)
                run.error = StageError.from_exception(error)
                logger.warning("No stage for current status", artifact_id=artifact_id, status=status.value)
                break

            checkpoint = Checkpoint(status=status, content=artifact.content, stage_id=config.stage_id)
            self._checkpoints[artifact_id] = checkpoint
            self._notify(on_progress, run, artifact, config)

            stage_params = {
                **(params or {}),
                "artifact_id": artifact_id,
                "artifact_type": artifact.type.value,
                "title": artifact.title,
                "tone": artifact.tone,
                "status": status.value,
                "run_trace_id": run.trace_id,
            }
            result = await self.invoker.invoke(config.stage_id, artifact_id, stage_params)
            run.stage_results[config.stage_id] = result

            if result.success:
                try:
                    artifact = await self._apply_result(artifact_id, config, checkpoint, result)
                except PipelineError as e:
                    await self._fail(run, config, checkpoint, StageError.from_exception(e))
                    break
                run.stages_completed.append(config.stage_id)
            elif not config.required:
                run.optional_failures.append(config.stage_id)
                logger.warning(
                    "Optional stage failed, continuing",
                    artifact_id=artifact_id,
                    stage=config.stage_id,
                    error=result.error.message if result.error else None,
                )
                try:
                    artifact = await self._skip_optional(artifact_id, config)
                except PipelineError as e:
                    await self._fail(run, config, checkpoint, StageError.from_exception(e))
                    break
            else:
                await self._fail(run, config, checkpoint, result.error)
                break

            if not chain:
                run.success = True
                run.waiting_for_approval = artifact.status in GATES
                break
            if artifact.status in TERMINAL:
                run.success = True
                break

        if run.success:
            self._checkpoints.pop(artifact_id, None)
        return await self._finish(run, start, artifact_id)

    async def _finish(self, run: PipelineRun, start: float, artifact_id: Optional[str]) -> PipelineRun:
        run.duration_ms = int((time.perf_counter() - start) * 1000)
        if artifact_id is not None:
            try:
                run.final_status = (await self.store.get(artifact_id)).status
            except PipelineError:
                run.final_status = None

        log = logger.info if run.success else logger.warning
        log(
            "Pipeline run finished",
            artifact_id=run.artifact_id,
            run_trace_id=run.trace_id,
            success=run.success,
            stages_completed=run.stages_completed,
            waiting_for_approval=run.waiting_for_approval,
            final_status=run.final_status.value if run.final_status else None,
            failed_stage=run.failed_stage,
            duration_ms=run.duration_ms,
        )
        return run

    # ------------------------------------------------------------------
    # Transitions and rollback
    # ------------------------------------------------------------------

    async def _apply_result(
        self,
        artifact_id: str,
        config: StageConfig,
        checkpoint: Checkpoint,
        result: StageResult,
    ) -> Artifact:
        transition = result.status_transition or StatusTransition(
            from_status=checkpoint.status, to_status=config.next_status
        )
        self._validate(artifact_id, config, transition)

        content = None
        metadata = None
        if result.mocked:
            # Canned responses stand in for the handler's own writes
            content = result.data.get("content")
            metadata = result.data.get("metadata")

        updated = await self.store.update(
            artifact_id,
            expected_status=transition.from_status,
            status=transition.to_status,
            content=content,
            metadata=metadata,
        )
        logger.status_change(
            artifact_id,
            transition.from_status.value,
            transition.to_status.value,
            title=updated.title,
        )
        return updated

    def _validate(self, artifact_id: str, config: StageConfig, transition: StatusTransition):
        from_status, to_status = transition.from_status, transition.to_status
        direct = is_valid_transition(from_status, to_status)
        via_in_progress = (
            config.in_progress_status is not None
            and from_status == config.status
            and is_valid_transition(from_status, config.in_progress_status)
            and is_valid_transition(config.in_progress_status, to_status)
        )
        if (
            from_status not in config.allowed_from
            or to_status != config.next_status
            or not (direct or via_in_progress)
        ):
            raise InvalidStatusError(
                artifact_id,
                f"{from_status.value} -> {to_status.value}",
                [f"{s.value} -> {config.next_status.value}" for s in config.allowed_from],
            )

    async def _skip_optional(self, artifact_id: str, config: StageConfig) -> Artifact:
        current = await self.store.get(artifact_id)
        return await self._move(current, current.status, config.next_status)

    async def _move(self, artifact: Artifact, from_status: ArtifactStatus, to_status: ArtifactStatus) -> Artifact:
        updated = await self.store.update(
            artifact.id,
            expected_status=from_status,
            status=to_status,
        )
        logger.status_change(artifact.id, from_status.value, to_status.value, title=artifact.title)
        return updated

    async def _fail(
        self,
        run: PipelineRun,
        config: StageConfig,
        checkpoint: Checkpoint,
        error: Optional[StageError],
    ):
        run.error = error
        run.failed_stage = config.stage_id
        await self._rollback(run, checkpoint, error)

    async def _rollback(self, run: PipelineRun, checkpoint: Checkpoint, error: Optional[StageError]):
        """
        Restore the checkpoint after a failed required stage.

        Content is always restored, so output of earlier stages survives any
        later failure. The status is restored if the handler moved it. A
        concurrent modification is left alone: another run owns the artifact.
        The checkpoint is kept only when the restore write itself fails.
        """
        artifact_id = run.artifact_id
        if error is not None and error.category == ErrorCategory.CONCURRENT_MODIFICATION:
            logger.warning("Skipping rollback after concurrent modification", artifact_id=artifact_id)
            self._checkpoints.pop(artifact_id, None)
            return

        try:
            current = await self.store.get(artifact_id)
            status_changed = current.status != checkpoint.status
            content_changed = current.content != checkpoint.content
            if status_changed or content_changed:
                await self.store.update(
                    artifact_id,
                    expected_status=current.status,
                    status=checkpoint.status if status_changed else None,
                    content=checkpoint.content if content_changed else None,
                )
                run.rolled_back_to = checkpoint.status
                logger.warning(
                    "Artifact rolled back",
                    artifact_id=artifact_id,
                    from_status=current.status.value,
                    to_status=checkpoint.status.value,
                    content_restored=content_changed,
                    recoverable=error.recoverable if error else None,
                    stage=checkpoint.stage_id,
                )
        except PipelineError as e:
            run.rollback_error = e.message
            logger.error("Rollback failed", artifact_id=artifact_id, error=e.message)
            return

        self._checkpoints.pop(artifact_id, None)

    def _notify(
        self,
        on_progress: Optional[ProgressCallback],
        run: PipelineRun,
        artifact: Artifact,
        config: StageConfig,
    ):
        if on_progress is None:
            return
        ordered = list(self.stages.values())
        progress = PipelineProgress(
            artifact_id=artifact.id,
            trace_id=run.trace_id,
            current_stage=config.stage_id,
            current_status=artifact.status,
            completed_stages=list(run.stages_completed),
            stage_index=ordered.index(config) if config in ordered else 0,
            total_stages=len(ordered),
        )
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning("Progress callback failed", artifact_id=artifact.id, error=str(e))
