"""
Foundations stage: research -> foundations.
"""

from typing import Any, Dict

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.errors import ResearchNotFoundError
from content_pipeline.pipeline.stages.base import StageHandler


class FoundationsStage(StageHandler):
    """Derives the writing characteristics later stages write against."""

    stage_id = "foundations"
    temperature = 0.4

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        artifact = await self.load(artifact_id, [ArtifactStatus.RESEARCH])
        if not artifact.metadata.get("research"):
            raise ResearchNotFoundError(f"Artifact {artifact_id} has no research to build on")

        prompt = (
            f"Describe the voice, structure and sentence style for a {artifact.tone} "
            f"{artifact.type.value} titled '{artifact.title}'.\n\n"
            f"Author brief:\n{self.brief_block(artifact)}\n\n"
            f"Research:\n{self.research_block(artifact)}"
        )
        summary = await self.generate(prompt)

        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.RESEARCH,
            metadata={"writing_characteristics": {"summary": summary.strip(), "tone": artifact.tone}},
        )
        return StageResult(
            success=True,
            data={"characteristics_length": len(summary)},
            status_transition=self.transition(ArtifactStatus.RESEARCH, ArtifactStatus.FOUNDATIONS),
        )
