"""
Pipeline transition table.

Status ordering, the legal edges between statuses, the gated statuses, and
which stage runs at which status.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from content_pipeline.artifacts.models import ArtifactStatus

STATUS_ORDER: List[ArtifactStatus] = [
    ArtifactStatus.DRAFT,
    ArtifactStatus.RESEARCH,
    ArtifactStatus.FOUNDATIONS,
    ArtifactStatus.SKELETON,
    ArtifactStatus.FOUNDATIONS_APPROVAL,
    ArtifactStatus.WRITING,
    ArtifactStatus.HUMANITY_CHECKING,
    ArtifactStatus.CREATING_VISUALS,
    ArtifactStatus.READY,
    ArtifactStatus.PUBLISHED,
]

# Valid status moves. Rollbacks are not edges; they restore a checkpoint.
TRANSITIONS: Dict[ArtifactStatus, FrozenSet[ArtifactStatus]] = {
    ArtifactStatus.DRAFT: frozenset({ArtifactStatus.RESEARCH}),
    ArtifactStatus.RESEARCH: frozenset({ArtifactStatus.FOUNDATIONS}),
    ArtifactStatus.FOUNDATIONS: frozenset({ArtifactStatus.SKELETON}),
    ArtifactStatus.SKELETON: frozenset({ArtifactStatus.FOUNDATIONS_APPROVAL}),
    ArtifactStatus.FOUNDATIONS_APPROVAL: frozenset({ArtifactStatus.WRITING}),
    ArtifactStatus.WRITING: frozenset({ArtifactStatus.HUMANITY_CHECKING}),
    ArtifactStatus.HUMANITY_CHECKING: frozenset({ArtifactStatus.CREATING_VISUALS}),
    ArtifactStatus.CREATING_VISUALS: frozenset({ArtifactStatus.READY}),
    ArtifactStatus.READY: frozenset({ArtifactStatus.PUBLISHED}),
    ArtifactStatus.PUBLISHED: frozenset({ArtifactStatus.READY}),
}

# Statuses that only move on an external approval signal
GATES: FrozenSet[ArtifactStatus] = frozenset({ArtifactStatus.SKELETON})

# Statuses where automatic chaining stops
TERMINAL: FrozenSet[ArtifactStatus] = frozenset({ArtifactStatus.READY, ArtifactStatus.PUBLISHED})


@dataclass(frozen=True)
class StageConfig:
    """A stage bound to the status it runs from."""
    stage_id: str
    status: ArtifactStatus
    next_status: ArtifactStatus
    in_progress_status: Optional[ArtifactStatus] = None
    required: bool = True
    description: str = ""

    @property
    def allowed_from(self) -> FrozenSet[ArtifactStatus]:
        """Statuses a completion transition may start from."""
        if self.in_progress_status is None:
            return frozenset({self.status})
        return frozenset({self.status, self.in_progress_status})


STAGE_CONFIG: Dict[ArtifactStatus, StageConfig] = {
    ArtifactStatus.DRAFT: StageConfig(
        stage_id="research",
        status=ArtifactStatus.DRAFT,
        next_status=ArtifactStatus.RESEARCH,
        description="Gather source material for the topic",
    ),
    ArtifactStatus.RESEARCH: StageConfig(
        stage_id="foundations",
        status=ArtifactStatus.RESEARCH,
        next_status=ArtifactStatus.FOUNDATIONS,
        description="Derive writing characteristics from research and brief",
    ),
    ArtifactStatus.FOUNDATIONS: StageConfig(
        stage_id="skeleton",
        status=ArtifactStatus.FOUNDATIONS,
        next_status=ArtifactStatus.SKELETON,
        description="Outline the piece as H2 sections",
    ),
    ArtifactStatus.FOUNDATIONS_APPROVAL: StageConfig(
        stage_id="writing",
        status=ArtifactStatus.FOUNDATIONS_APPROVAL,
        next_status=ArtifactStatus.HUMANITY_CHECKING,
        in_progress_status=ArtifactStatus.WRITING,
        description="Write every skeleton section",
    ),
    ArtifactStatus.HUMANITY_CHECKING: StageConfig(
        stage_id="humanity_check",
        status=ArtifactStatus.HUMANITY_CHECKING,
        next_status=ArtifactStatus.CREATING_VISUALS,
        description="Rewrite to remove machine-sounding patterns",
    ),
    ArtifactStatus.CREATING_VISUALS: StageConfig(
        stage_id="visuals",
        status=ArtifactStatus.CREATING_VISUALS,
        next_status=ArtifactStatus.READY,
        required=False,
        description="Identify image needs per section",
    ),
}


def is_valid_transition(from_status: ArtifactStatus, to_status: ArtifactStatus) -> bool:
    """Check a single edge against the transition table."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


def status_index(status: ArtifactStatus) -> int:
    """Position of a status in pipeline order."""
    return STATUS_ORDER.index(status)
