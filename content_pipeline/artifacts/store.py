"""
Artifact Store.

Persistence seam for artifacts. Every status write is a compare-and-set
against the status the writer read, which is the pipeline's only
concurrency discipline.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from content_pipeline.artifacts.models import Artifact, ArtifactStatus
from content_pipeline.errors import ArtifactNotFoundError, ConcurrentModificationError
from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("artifact_store")

WRITE_ONCE_METADATA_KEYS = ("author_brief",)


def merge_metadata(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append-only merge: incoming keys are added or updated, existing keys are
    never dropped, and write-once keys keep their first value.
    """
    merged = dict(existing)
    for key, value in incoming.items():
        if key in WRITE_ONCE_METADATA_KEYS and merged.get(key) not in (None, ""):
            if merged[key] != value:
                logger.warning("Ignoring rewrite of write-once metadata key", key=key)
            continue
        merged[key] = value
    return merged


class ArtifactStore(ABC):
    """Interface the pipeline uses to read and write artifacts."""

    @abstractmethod
    async def get(self, artifact_id: str) -> Artifact:
        """Return a copy of the artifact, raising ArtifactNotFoundError if absent."""

    @abstractmethod
    async def create(self, artifact: Artifact) -> Artifact:
        """Persist a new artifact."""

    @abstractmethod
    async def update(
        self,
        artifact_id: str,
        *,
        expected_status: ArtifactStatus,
        status: Optional[ArtifactStatus] = None,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        """
        Apply a write if the stored status still equals ``expected_status``.

        Raises:
            ConcurrentModificationError: the stored status moved on
        """


class InMemoryArtifactStore(ArtifactStore):
    """
    Dict-backed store with optional JSON file persistence.

    Check and write happen without an intervening await, so a compare-and-set
    is atomic with respect to other tasks on the same event loop.
    """

    def __init__(self, storage_path: Optional[Path] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        self._artifacts: Dict[str, Artifact] = {}

    async def get(self, artifact_id: str) -> Artifact:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None and self.storage_path:
            artifact = self._load_file(artifact_id)
            if artifact:
                self._artifacts[artifact_id] = artifact
        if artifact is None:
            raise ArtifactNotFoundError(artifact_id)
        return artifact.model_copy(deep=True)

    async def create(self, artifact: Artifact) -> Artifact:
        stored = artifact.model_copy(deep=True)
        self._artifacts[stored.id] = stored
        self._write_file(stored)

        logger.info(
            "Stored artifact",
            artifact_id=stored.id,
            artifact_type=stored.type.value,
            status=stored.status.value,
        )
        return stored.model_copy(deep=True)

    async def update(
        self,
        artifact_id: str,
        *,
        expected_status: ArtifactStatus,
        status: Optional[ArtifactStatus] = None,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        current = self._artifacts.get(artifact_id)
        if current is None:
            raise ArtifactNotFoundError(artifact_id)

        if current.status != expected_status:
            raise ConcurrentModificationError(
                artifact_id,
                expected_status=expected_status.value,
                actual_status=current.status.value,
            )

        if status is not None:
            current.status = status
        if content is not None:
            current.content = content
        if metadata:
            current.metadata = merge_metadata(current.metadata, metadata)
        current.updated_at = datetime.utcnow()

        self._write_file(current)
        return current.model_copy(deep=True)

    async def list(self, status: Optional[ArtifactStatus] = None) -> List[Artifact]:
        """All artifacts, optionally filtered by status."""
        return [
            a.model_copy(deep=True)
            for a in self._artifacts.values()
            if status is None or a.status == status
        ]

    def _write_file(self, artifact: Artifact) -> None:
        """Store artifact as JSON file."""
        if not self.storage_path:
            return
        file_path = self.storage_path / f"{artifact.id}.json"
        with open(file_path, "w") as f:
            json.dump(artifact.model_dump(mode="json"), f, indent=2, default=str)

    def _load_file(self, artifact_id: str) -> Optional[Artifact]:
        file_path = self.storage_path / f"{artifact_id}.json"
        if not file_path.exists():
            return None
        with open(file_path) as f:
            return Artifact.model_validate(json.load(f))
