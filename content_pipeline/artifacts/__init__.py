"""
Artifacts moving through the content pipeline and their persistence seam.
"""

from content_pipeline.artifacts.models import (
    Artifact,
    ArtifactStatus,
    ArtifactType,
    StageError,
    StageResult,
    StatusTransition,
)
from content_pipeline.artifacts.store import ArtifactStore, InMemoryArtifactStore

__all__ = [
    "Artifact",
    "ArtifactStatus",
    "ArtifactType",
    "StageError",
    "StageResult",
    "StatusTransition",
    "ArtifactStore",
    "InMemoryArtifactStore",
]
