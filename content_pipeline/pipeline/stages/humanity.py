"""
Humanity check stage: humanity_checking -> creating_visuals.
"""

from typing import Any, Dict

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.errors import ContentFilterError, ToolExecutionError
from content_pipeline.pipeline.stages.base import StageHandler

# Phrasings the rewrite is asked to remove
AI_PATTERNS = (
    "delve into",
    "in today's fast-paced world",
    "it's important to note",
    "unlock the potential",
    "game-changer",
    "a testament to",
    "navigate the landscape",
    "in conclusion",
)


class HumanityCheckStage(StageHandler):
    """Rewrites the written content so it reads less machine-generated."""

    stage_id = "humanity_check"
    temperature = 0.6

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        artifact = await self.load(artifact_id, [ArtifactStatus.HUMANITY_CHECKING])
        original = artifact.content
        if not original.strip():
            raise ToolExecutionError(f"Artifact {artifact_id} has no content to check", retryable=False)

        patterns = "\n".join(f"- {p}" for p in AI_PATTERNS)
        prompt = (
            "Rewrite the following content so it reads as written by a person. "
            "Keep every '## ' heading and the '---' separators. Remove these patterns:\n"
            f"{patterns}\n\nContent:\n{original}"
        )
        humanized = (await self.generate(prompt)).strip()
        if not humanized:
            raise ContentFilterError("Humanity check returned no content")

        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.HUMANITY_CHECKING,
            content=humanized,
        )
        return StageResult(
            success=True,
            data={
                "original_length": len(original),
                "humanized_length": len(humanized),
                "length_change": len(humanized) - len(original),
                "patterns_checked": len(AI_PATTERNS),
            },
            status_transition=self.transition(
                ArtifactStatus.HUMANITY_CHECKING, ArtifactStatus.CREATING_VISUALS
            ),
        )
