"""
Stage handler base.

A handler runs the work bound to one status: it reads the artifact, calls the
generation provider, writes its output through the store's compare-and-set,
and returns a StageResult naming the status move it wants.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from content_pipeline.artifacts.models import Artifact, ArtifactStatus, StageResult, StatusTransition
from content_pipeline.artifacts.store import ArtifactStore
from content_pipeline.errors import InvalidStatusError
from content_pipeline.providers.base import GenerationOptions, GenerationProvider
from content_pipeline.utils.token_manager import ContextPriority, TokenBudgetManager

# Share of the dynamic budget a single prompt section may claim
RESEARCH_TOKEN_SHARE = 4000
BRIEF_TOKEN_SHARE = 1000


class StageHandler(ABC):
    """Base class for the handler bound to one pipeline status."""

    stage_id: str = ""
    temperature: float = 0.7
    max_output_tokens: Optional[int] = None

    def __init__(
        self,
        store: ArtifactStore,
        provider: GenerationProvider,
        budget_manager: Optional[TokenBudgetManager] = None,
    ):
        self.store = store
        self.provider = provider
        self.budget_manager = budget_manager or TokenBudgetManager()

    @abstractmethod
    async def handle(self, artifact_id: str, params: Dict[str, Any]) -> StageResult:
        """Run the stage for one artifact."""

    async def load(self, artifact_id: str, statuses: Iterable[ArtifactStatus]) -> Artifact:
        """Read the artifact and check it sits at one of ``statuses``."""
        statuses = list(statuses)
        artifact = await self.store.get(artifact_id)
        if artifact.status not in statuses:
            raise InvalidStatusError(artifact_id, artifact.status.value, [s.value for s in statuses])
        return artifact

    async def generate(self, prompt: str, temperature: Optional[float] = None) -> str:
        options = GenerationOptions(
            temperature=self.temperature if temperature is None else temperature,
            max_output_tokens=self.max_output_tokens,
        )
        return await self.provider.generate(prompt, options)

    def brief_block(self, artifact: Artifact) -> str:
        brief = artifact.author_brief or "No brief provided."
        return self.budget_manager.truncate_if_needed(
            brief, ContextPriority.REQUIRED, BRIEF_TOKEN_SHARE
        )

    def research_block(self, artifact: Artifact) -> str:
        """Research findings as bullet lines, truncated first when long."""
        findings = artifact.metadata.get("research") or []
        lines = [
            f"- {f.get('source_name', 'source')}: {f.get('excerpt', '')}"
            for f in findings
        ]
        return self.budget_manager.truncate_if_needed(
            "\n".join(lines), ContextPriority.RESEARCH_DATA, RESEARCH_TOKEN_SHARE
        )

    @staticmethod
    def transition(from_status: ArtifactStatus, to_status: ArtifactStatus) -> StatusTransition:
        return StatusTransition(from_status=from_status, to_status=to_status)
