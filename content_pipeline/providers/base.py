"""
Generation provider interface.

The pipeline only ever sees ``generate(prompt, options) -> text``; which model
or vendor sits behind it is a composition-time decision.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from content_pipeline.utils.circuit_breaker import CircuitBreaker


@dataclass
class GenerationOptions:
    """Sampling options passed through to the provider."""
    temperature: float = 0.7
    max_output_tokens: Optional[int] = None


class GenerationProvider(ABC):
    """Opaque text generation capability."""

    name: str = "provider"

    @abstractmethod
    async def generate(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        """Generate text for the prompt."""

    async def aclose(self):
        """Release any held resources."""


class GuardedGenerationProvider(GenerationProvider):
    """
    Routes every call through the circuit breaker for the wrapped provider.

    The breaker comes from the process-wide registry, so a provider tripped
    while one stage runs stays tripped for the next stage.
    """

    def __init__(self, provider: GenerationProvider, breaker: CircuitBreaker):
        self.provider = provider
        self.breaker = breaker
        self.name = provider.name

    async def generate(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        return await self.breaker.execute(lambda: self.provider.generate(prompt, options))

    async def aclose(self):
        await self.provider.aclose()
