"""
Research stage: draft -> research.
"""

from typing import Any, Dict, Optional

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.context.assembler import ContextAssembler
from content_pipeline.errors import ResearchNotFoundError
from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("stage.research")

MAX_FINDINGS = 8


class ResearchStage(StageHandler):
    """
    Collects findings for the artifact's topic. When the call params carry a
    ``customer_id`` and an assembler is configured, the customer context is
    included in the prompt.
    """

    stage_id = "research"
    temperature = 0.3

    def __init__(self, *args, context_assembler: Optional[ContextAssembler] = None, context_token_budget: int = 3000, **kwargs):
        super().__init__(*args, **kwargs)
        self.context_assembler = context_assembler
        self.context_token_budget = context_token_budget

    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        artifact = await self.load(artifact_id, [ArtifactStatus.DRAFT])

        customer_context = ""
        customer_id = params.get("customer_id")
        if customer_id and self.context_assembler:
            customer_context = await self.context_assembler.build(customer_id, self.context_token_budget)

        prompt = (
            f"Research the topic '{artifact.title}' for a {artifact.type.value}.\n\n"
            f"Author brief:\n{self.brief_block(artifact)}\n\n"
            f"{customer_context}\n\n"
            "List the most useful findings, one paragraph per finding."
        )
        text = await self.generate(prompt)

        paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()][:MAX_FINDINGS]
        if not paragraphs:
            raise ResearchNotFoundError(f"No research findings produced for artifact {artifact_id}")

        findings = [
            {
                "source_name": f"{self.provider.name}-finding-{i + 1}",
                "source_url": None,
                "excerpt": paragraph,
                "relevance_score": None,
            }
            for i, paragraph in enumerate(paragraphs)
        ]
        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.DRAFT,
            metadata={"research": findings},
        )

        logger.info("Research collected", artifact_id=artifact_id, sources_found=len(findings))
        return StageResult(
            success=True,
            data={"sources_found": len(findings), "used_customer_context": bool(customer_context)},
            status_transition=self.transition(ArtifactStatus.DRAFT, ArtifactStatus.RESEARCH),
        )
