"""
Visuals stage: creating_visuals -> ready.

Records the images the piece needs under ``visuals_metadata.image_needs``.
Generating the images themselves happens elsewhere.
"""

from datetime import datetime
from typing import Any, Dict
from uuid import uuid4

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.errors import ToolExecutionError
from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.pipeline.stages.sections import parse_sections


class VisualsStage(StageHandler):
    stage_id = "visuals"
    temperature = 0.5

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        artifact = await self.load(artifact_id, [ArtifactStatus.CREATING_VISUALS])
        sections = parse_sections(artifact.content, artifact.title)

        headings = "\n".join(f"{i + 1}. {s.heading}" for i, s in enumerate(sections))
        prompt = (
            f"For each numbered section of '{artifact.title}', describe one image "
            "that would support it. Answer with one line per section, in order.\n\n"
            f"{headings}"
        )
        text = await self.generate(prompt)
        descriptions = [line.strip().lstrip("0123456789.-) ").strip() for line in text.splitlines()]
        descriptions = [d for d in descriptions if d]
        if not descriptions:
            raise ToolExecutionError("No image descriptions generated", retryable=True)

        image_needs = [
            {
                "id": str(uuid4()),
                "placement_after": section.heading,
                "description": description,
                "purpose": "hero" if index == 0 else "supporting",
                "style": "illustration",
                "approved": False,
            }
            for index, (section, description) in enumerate(zip(sections, descriptions))
        ]

        existing = dict(artifact.visuals_metadata)
        visuals_metadata = {
            **existing,
            "image_needs": list(existing.get("image_needs", [])) + image_needs,
            "identified_at": datetime.utcnow().isoformat(),
        }
        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.CREATING_VISUALS,
            metadata={"visuals_metadata": visuals_metadata},
        )
        return StageResult(
            success=True,
            data={"image_count": len(image_needs)},
            status_transition=self.transition(ArtifactStatus.CREATING_VISUALS, ArtifactStatus.READY),
        )
