"""
Writing stage: foundations_approval -> writing -> humanity_checking.

Sections are written one at a time, in skeleton order. The stage succeeds if
at least one section was written; failed sections are reported in
``StageResult.errors`` and counted in ``writing_metadata``.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Tuple

from content_pipeline.artifacts.models import ArtifactStatus, StageError, StageResult
from content_pipeline.errors import ContentFilterError, ToolExecutionError, classify_error
from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.pipeline.stages.sections import Section, join_sections, parse_sections
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("stage.writing")


class WritingStage(StageHandler):
    stage_id = "writing"
    temperature = 0.7

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        trace_id = params.get("trace_id", "")
        artifact = await self.load(
            artifact_id, [ArtifactStatus.FOUNDATIONS_APPROVAL, ArtifactStatus.WRITING]
        )

        # A retry of this stage re-enters with the status already moved
        if artifact.status == ArtifactStatus.FOUNDATIONS_APPROVAL:
            artifact = await self.store.update(
                artifact_id,
                expected_status=ArtifactStatus.FOUNDATIONS_APPROVAL,
                status=ArtifactStatus.WRITING,
            )
            logger.status_change(
                artifact_id,
                ArtifactStatus.FOUNDATIONS_APPROVAL.value,
                ArtifactStatus.WRITING.value,
                title=artifact.title,
            )

        sections = parse_sections(artifact.content, artifact.title)
        tone = params.get("tone") or artifact.tone

        written: List[Tuple[str, str]] = []
        errors: List[str] = []
        timings: List[Dict[str, Any]] = []

        for index, section in enumerate(sections):
            start = time.perf_counter()
            try:
                text = await self.generate(self._section_prompt(artifact, section, tone))
                if not text.strip():
                    raise ContentFilterError(f"Empty content for section '{section.heading}'")
                written.append((section.heading, text.strip()))
                success = True
            except Exception as e:
                error = classify_error(e)
                errors.append(f"{section.heading}: {error.message}")
                success = False
                logger.warning(
                    "Section failed",
                    artifact_id=artifact_id,
                    section_index=index,
                    section_heading=section.heading,
                    category=error.category.value,
                    error=error.message,
                )
            timings.append({
                "heading": section.heading,
                "duration_ms": int((time.perf_counter() - start) * 1000),
                "success": success,
            })

        progress = {
            "sections_total": len(sections),
            "sections_written": len(written),
            "section_errors": len(errors),
            "section_timings": timings,
        }

        if not written:
            return StageResult(
                success=False,
                trace_id=trace_id,
                data=progress,
                errors=errors,
                error=StageError.from_exception(
                    ToolExecutionError(f"All {len(sections)} sections failed to generate")
                ),
            )

        content = join_sections(written)
        writing_metadata = {
            "trace_id": trace_id,
            "sections_written": len(written),
            "section_errors": len(errors),
            "section_timings": timings,
            "tone": tone,
            "completed_at": datetime.utcnow().isoformat(),
        }
        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.WRITING,
            content=content,
            metadata={"writing_metadata": writing_metadata},
        )

        logger.info(
            "Content written",
            artifact_id=artifact_id,
            sections_written=len(written),
            section_errors=len(errors),
            total_length=len(content),
        )
        return StageResult(
            success=True,
            trace_id=trace_id,
            data={**progress, "total_length": len(content)},
            errors=errors,
            status_transition=self.transition(ArtifactStatus.WRITING, ArtifactStatus.HUMANITY_CHECKING),
        )

    def _section_prompt(self, artifact, section: Section, tone: str) -> str:
        characteristics = artifact.metadata.get("writing_characteristics", {})
        return (
            f"Write the section '{section.heading}' of a {artifact.type.value} "
            f"titled '{artifact.title}' in a {tone} tone.\n\n"
            f"Section notes:\n{section.placeholder}\n\n"
            f"Style:\n{characteristics.get('summary', '')}\n\n"
            f"Research:\n{self.research_block(artifact)}\n\n"
            "Write only the section body, without the heading."
        )
