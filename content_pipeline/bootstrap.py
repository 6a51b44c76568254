"""
Composition root.

Builds every pipeline service once from Settings and wires them together.
Nothing in the package holds module-level service instances; callers keep
the returned Pipeline for the lifetime of the process.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from config.settings import Settings, load_settings
from content_pipeline.artifacts.store import ArtifactStore, InMemoryArtifactStore
from content_pipeline.context.assembler import ContextAssembler, CustomerDataSource
from content_pipeline.errors import RetryPolicy
from content_pipeline.mocks.gateway import MockGateway
from content_pipeline.pipeline.invoker import StageInvoker
from content_pipeline.pipeline.stages import (
    FoundationsStage,
    HumanityCheckStage,
    ResearchStage,
    SkeletonStage,
    VisualsStage,
    WritingStage,
)
from content_pipeline.pipeline.state_machine import PipelineStateMachine
from content_pipeline.providers.base import GenerationProvider, GuardedGenerationProvider
from content_pipeline.providers.ollama import OllamaProvider
from content_pipeline.utils.circuit_breaker import CircuitBreakerRegistry
from content_pipeline.utils.retry import RetryPolicyEngine
from content_pipeline.utils.structured_logging import get_logger
from content_pipeline.utils.token_manager import TokenBudget, TokenBudgetManager

logger = get_logger("bootstrap")


@dataclass
class Pipeline:
    """Every long-lived service of one pipeline process."""
    settings: Settings
    store: ArtifactStore
    breakers: CircuitBreakerRegistry
    provider: GenerationProvider
    budget_manager: TokenBudgetManager
    retry_engine: RetryPolicyEngine
    mock_gateway: MockGateway
    invoker: StageInvoker
    state_machine: PipelineStateMachine
    context_assembler: Optional[ContextAssembler] = None

    def health(self) -> dict:
        return self.breakers.health()

    async def aclose(self):
        await self.mock_gateway.drain_captures()
        await self.provider.aclose()


def build_pipeline(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ArtifactStore] = None,
    provider: Optional[GenerationProvider] = None,
    data_source: Optional[CustomerDataSource] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Pipeline:
    """
    Wire the pipeline.

    Args:
        settings: Configuration; loaded from the environment when omitted
        store: Artifact store; an in-memory store when omitted
        provider: Raw generation provider; Ollama when omitted
        data_source: Customer records for the research stage's context block
        sleep: Suspension used by retry backoff and mock latency
        clock: Monotonic clock used by circuit breakers
    """
    settings = settings or load_settings()
    store = store or InMemoryArtifactStore()

    breakers = CircuitBreakerRegistry(
        failure_threshold=settings.circuit_failure_threshold,
        reset_timeout_ms=settings.circuit_reset_timeout_ms,
        clock=clock,
    )
    raw_provider = provider or OllamaProvider(
        settings.ollama_url,
        settings.ollama_model,
        timeout=settings.provider_timeout_seconds,
    )
    guarded = GuardedGenerationProvider(raw_provider, breakers.get(raw_provider.name))

    budget_manager = TokenBudgetManager(TokenBudget(
        max=settings.token_budget_max,
        system_prompt=settings.reserved_system_prompt,
        tool_definitions=settings.reserved_tool_definitions,
        user_context=settings.reserved_user_context,
        response_buffer=settings.reserved_response_buffer,
    ))
    retry_engine = RetryPolicyEngine(
        RetryPolicy(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        ),
        sleep=sleep,
    )
    mock_gateway = MockGateway(settings, sleep=sleep)

    assembler = None
    if data_source is not None:
        assembler = ContextAssembler(data_source, budget_manager)

    common = {"store": store, "provider": guarded, "budget_manager": budget_manager}
    handlers = {
        "research": ResearchStage(
            context_assembler=assembler,
            context_token_budget=settings.context_token_budget,
            **common,
        ),
        "foundations": FoundationsStage(**common),
        "skeleton": SkeletonStage(**common),
        "writing": WritingStage(**common),
        "humanity_check": HumanityCheckStage(**common),
        "visuals": VisualsStage(**common),
    }
    invoker = StageInvoker(handlers, retry_engine, mock_gateway)
    state_machine = PipelineStateMachine(store, invoker)

    logger.info(
        "Pipeline built",
        provider=raw_provider.name,
        stages=sorted(handlers.keys()),
        mock_mode=settings.mock_all_stages,
        available_tokens=budget_manager.get_available_tokens(),
    )
    return Pipeline(
        settings=settings,
        store=store,
        breakers=breakers,
        provider=guarded,
        budget_manager=budget_manager,
        retry_engine=retry_engine,
        mock_gateway=mock_gateway,
        invoker=invoker,
        state_machine=state_machine,
        context_assembler=assembler,
    )
