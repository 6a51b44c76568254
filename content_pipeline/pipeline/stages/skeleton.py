"""
Skeleton stage: foundations -> skeleton.

The skeleton replaces the artifact content and is what the author approves
before writing starts.
"""

from typing import Any, Dict

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.errors import ToolExecutionError
from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.pipeline.stages.sections import parse_sections
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("stage.skeleton")


class SkeletonStage(StageHandler):
    stage_id = "skeleton"
    temperature = 0.5

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        artifact = await self.load(artifact_id, [ArtifactStatus.FOUNDATIONS])
        characteristics = artifact.metadata.get("writing_characteristics", {})

        prompt = (
            f"Outline a {artifact.type.value} titled '{artifact.title}'. "
            "Use one '## ' heading per section followed by a one-line note.\n\n"
            f"Author brief:\n{self.brief_block(artifact)}\n\n"
            f"Style:\n{characteristics.get('summary', '')}\n\n"
            f"Research:\n{self.research_block(artifact)}"
        )
        skeleton = (await self.generate(prompt)).strip()
        if not skeleton:
            raise ToolExecutionError("Generated skeleton is empty", retryable=True)

        sections = parse_sections(skeleton, artifact.title)
        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.FOUNDATIONS,
            content=skeleton,
        )

        logger.info("Skeleton generated", artifact_id=artifact_id, sections=len(sections))
        return StageResult(
            success=True,
            data={"sections": len(sections), "skeleton_length": len(skeleton)},
            status_transition=self.transition(ArtifactStatus.FOUNDATIONS, ArtifactStatus.SKELETON),
        )
