"""Text generation providers."""

from content_pipeline.providers.base import (
    GenerationOptions,
    GenerationProvider,
    GuardedGenerationProvider,
)
from content_pipeline.providers.ollama import OllamaProvider

__all__ = [
    "GenerationOptions",
    "GenerationProvider",
    "GuardedGenerationProvider",
    "OllamaProvider",
]
