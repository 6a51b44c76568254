"""Stage handlers, one per pipeline status that does work."""

from content_pipeline.pipeline.stages.base import StageHandler
from content_pipeline.pipeline.stages.foundations import FoundationsStage
from content_pipeline.pipeline.stages.humanity import HumanityCheckStage
from content_pipeline.pipeline.stages.research import ResearchStage
from content_pipeline.pipeline.stages.skeleton import SkeletonStage
from content_pipeline.pipeline.stages.visuals import VisualsStage
from content_pipeline.pipeline.stages.writing import WritingStage

__all__ = [
    "StageHandler",
    "ResearchStage",
    "FoundationsStage",
    "SkeletonStage",
    "WritingStage",
    "HumanityCheckStage",
    "VisualsStage",
]
