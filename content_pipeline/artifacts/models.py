"""
Artifact Models.

The unit of work moving through the pipeline, and the normalized envelope
every stage handler returns.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from content_pipeline.errors import ErrorCategory, PipelineError


class ArtifactType(str, Enum):
    """Kind of content being produced."""
    BLOG = "blog"
    SOCIAL_POST = "social_post"
    SHOWCASE = "showcase"


class ArtifactStatus(str, Enum):
    """Pipeline stages, in order."""
    DRAFT = "draft"
    RESEARCH = "research"
    FOUNDATIONS = "foundations"
    SKELETON = "skeleton"
    FOUNDATIONS_APPROVAL = "foundations_approval"
    WRITING = "writing"
    HUMANITY_CHECKING = "humanity_checking"
    CREATING_VISUALS = "creating_visuals"
    READY = "ready"
    PUBLISHED = "published"


class Artifact(BaseModel):
    """
    A piece of content moving through the pipeline.

    ``metadata`` is append-only: keys written by one stage are never dropped
    by a later one. ``author_brief`` is written once.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: ArtifactType = Field(default=ArtifactType.BLOG)
    status: ArtifactStatus = Field(default=ArtifactStatus.DRAFT)
    title: str = Field(default="")
    tone: str = Field(default="professional")
    content: str = Field(default="", description="Text payload, overwritten at stage boundaries")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def author_brief(self) -> Optional[str]:
        return self.metadata.get("author_brief")

    @property
    def writing_metadata(self) -> Dict[str, Any]:
        return self.metadata.get("writing_metadata", {})

    @property
    def visuals_metadata(self) -> Dict[str, Any]:
        return self.metadata.get("visuals_metadata", {})


class StageError(BaseModel):
    """Structured error data surfaced to callers instead of exceptions."""

    category: ErrorCategory
    message: str
    recoverable: bool
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: PipelineError) -> "StageError":
        return cls(
            category=error.category,
            message=error.message,
            recoverable=error.recoverable,
            details=error.details,
        )


class StatusTransition(BaseModel):
    """Status move requested by a stage handler."""

    from_status: ArtifactStatus = Field(alias="from")
    to_status: ArtifactStatus = Field(alias="to")

    model_config = {"populate_by_name": True}


class StageResult(BaseModel):
    """
    Normalized output of a stage handler.

    A failed result still carries partial progress (counts, lists) in ``data``
    when any progress happened.
    """

    success: bool
    trace_id: str = ""
    duration_ms: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[StageError] = None
    status_transition: Optional[StatusTransition] = None
    errors: List[str] = Field(default_factory=list, description="Per-item failures of a partially successful stage")
    mocked: bool = False

    @classmethod
    def failure(
        cls,
        error: PipelineError,
        trace_id: str = "",
        duration_ms: int = 0,
        data: Optional[Dict[str, Any]] = None,
    ) -> "StageResult":
        return cls(
            success=False,
            trace_id=trace_id,
            duration_ms=duration_ms,
            data=data or {},
            error=StageError.from_exception(error),
        )
