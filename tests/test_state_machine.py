"""
Pipeline state machine tests.

Drives artifacts through the fully wired pipeline with a scripted provider.
"""

import pytest

from content_pipeline.artifacts.models import ArtifactStatus, StageResult
from content_pipeline.bootstrap import build_pipeline
from content_pipeline.errors import (
    ContentFilterError,
    ErrorCategory,
    InvalidStatusError,
    ProviderError,
)
from content_pipeline.artifacts.store import InMemoryArtifactStore
from content_pipeline.pipeline.stages.base import StageHandler
from tests.fixtures import (
    FOUR_SECTION_SKELETON,
    ArtifactFactory,
    CustomerFactory,
    InMemoryCustomerDataSource,
    make_pipeline,
    make_settings,
)

SECTION_BODIES = {
    "Hook": "Body 1",
    "The Problem": "Body 2",
    "The Fix": "Body 3",
    "Conclusion": "Body 4",
}


def scripted(failing_sections=()):
    """Provider script keyed on the prompt each stage sends."""

    def respond(prompt: str) -> str:
        if prompt.startswith("Research the topic"):
            return "Small batches ship sooner.\n\nShort loops catch mistakes."
        if prompt.startswith("Describe the voice"):
            return "Short sentences. Concrete examples."
        if prompt.startswith("Outline a"):
            return FOUR_SECTION_SKELETON
        if prompt.startswith("Write the section"):
            heading = prompt.split("'")[1]
            if heading in failing_sections:
                raise ProviderError(f"{heading} timed out upstream")
            return SECTION_BODIES[heading]
        if prompt.startswith("Rewrite the following"):
            return prompt.split("Content:\n", 1)[1]
        if prompt.startswith("For each numbered section"):
            return "1. A late train\n2. A queue\n3. A short loop\n4. A calendar"
        raise AssertionError(f"Unexpected prompt: {prompt[:40]}")

    return respond


class ContentScribblingStage(StageHandler):
    """Overwrites content, moves status, then fails with the given error."""

    stage_id = "scribbler"

    def __init__(self, store, error, move_to=None):
        self.store = store
        self.error = error
        self.move_to = move_to
        self.calls = 0

    async def handle(self, artifact_id, params):
        self.calls += 1
        current = await self.store.get(artifact_id)
        await self.store.update(
            artifact_id,
            expected_status=current.status,
            status=self.move_to,
            content="half-written",
        )
        raise self.error


class RacingStage(StageHandler):
    """Succeeds, but another writer moves the status first."""

    stage_id = "research"

    def __init__(self, store):
        self.store = store

    async def handle(self, artifact_id, params):
        await self.store.update(
            artifact_id,
            expected_status=ArtifactStatus.DRAFT,
            status=ArtifactStatus.RESEARCH,
        )
        return StageResult(
            success=True,
            status_transition=self.transition(ArtifactStatus.DRAFT, ArtifactStatus.RESEARCH),
        )


@pytest.fixture
def pipeline(provider, sleep):
    provider.default_response = scripted()
    return make_pipeline(provider, sleep=sleep)


class TestAdvance:
    """Tests for automatic chaining."""

    @pytest.mark.asyncio
    async def test_draft_stops_at_skeleton_gate(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.success is True
        assert run.waiting_for_approval is True
        assert run.stages_completed == ["research", "foundations", "skeleton"]
        assert run.final_status == ArtifactStatus.SKELETON
        stored = await pipeline.store.get(artifact.id)
        assert stored.content == FOUR_SECTION_SKELETON
        assert len(stored.metadata["research"]) == 2
        assert stored.metadata["writing_characteristics"]["summary"] == "Short sentences. Concrete examples."
        assert pipeline.state_machine.get_checkpoint(artifact.id) is None

    @pytest.mark.asyncio
    async def test_approve_runs_to_ready(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())
        await pipeline.state_machine.advance(artifact.id)

        run = await pipeline.state_machine.approve(artifact.id)

        assert run.success is True
        assert run.stages_completed == ["writing", "humanity_check", "visuals"]
        assert run.final_status == ArtifactStatus.READY
        stored = await pipeline.store.get(artifact.id)
        assert stored.content.startswith("## Hook\n\nBody 1\n\n---\n\n## The Problem")
        assert stored.writing_metadata["sections_written"] == 4
        needs = stored.visuals_metadata["image_needs"]
        assert [n["placement_after"] for n in needs] == ["Hook", "The Problem", "The Fix", "Conclusion"]
        assert needs[0]["purpose"] == "hero"
        assert stored.author_brief == "Write for engineering leads."

    @pytest.mark.asyncio
    async def test_gate_is_a_no_op(self, pipeline, provider):
        artifact = await pipeline.store.create(ArtifactFactory.create(status=ArtifactStatus.SKELETON))

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.success is True
        assert run.waiting_for_approval is True
        assert run.stages_completed == []
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_progress_callback(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())
        seen = []

        await pipeline.state_machine.advance(artifact.id, on_progress=seen.append)

        assert [p.current_stage for p in seen] == ["research", "foundations", "skeleton"]
        assert [p.stage_index for p in seen] == [0, 1, 2]
        assert seen[0].total_stages == 6
        assert seen[2].completed_stages == ["research", "foundations"]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_stop_run(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())

        def explode(progress):
            raise RuntimeError("display broke")

        run = await pipeline.state_machine.advance(artifact.id, on_progress=explode)
        assert run.waiting_for_approval is True

    @pytest.mark.asyncio
    async def test_customer_context_reaches_research_prompt(self, provider, sleep):
        provider.default_response = scripted()
        source = InMemoryCustomerDataSource(customer=CustomerFactory.customer())
        pipeline = build_pipeline(
            make_settings(),
            store=InMemoryArtifactStore(),
            provider=provider,
            data_source=source,
            sleep=sleep,
        )
        artifact = await pipeline.store.create(ArtifactFactory.create())

        await pipeline.state_machine.step(artifact.id, params={"customer_id": "cust-1"})

        assert "**Customer**: Acme Corp" in provider.calls[0]["prompt"]
        assert "customer" in source.fetches


class TestWritingStage:
    """Tests for per-section writing through the state machine."""

    @pytest.mark.asyncio
    async def test_failed_section_is_skipped(self, pipeline, provider):
        provider.default_response = scripted(failing_sections={"The Problem"})
        artifact = await pipeline.store.create(ArtifactFactory.at_approval())

        run = await pipeline.state_machine.step(artifact.id)

        assert run.success is True
        assert run.stages_completed == ["writing"]
        result = run.stage_results["writing"]
        assert result.errors == ["The Problem: The Problem timed out upstream"]
        assert result.data["sections_written"] == 3

        stored = await pipeline.store.get(artifact.id)
        assert stored.status == ArtifactStatus.HUMANITY_CHECKING
        assert stored.content == (
            "## Hook\n\nBody 1\n\n---\n\n"
            "## The Fix\n\nBody 3\n\n---\n\n"
            "## Conclusion\n\nBody 4"
        )
        assert stored.writing_metadata["section_errors"] == 1
        assert [t["success"] for t in stored.writing_metadata["section_timings"]] == [True, False, True, True]

    @pytest.mark.asyncio
    async def test_all_sections_failing_rolls_back(self, pipeline, provider):
        provider.default_response = scripted(failing_sections=set(SECTION_BODIES))
        artifact = await pipeline.store.create(ArtifactFactory.at_approval())

        run = await pipeline.state_machine.step(artifact.id)

        assert run.success is False
        assert run.failed_stage == "writing"
        assert run.error.category == ErrorCategory.TOOL_EXECUTION_FAILED
        assert run.rolled_back_to == ArtifactStatus.FOUNDATIONS_APPROVAL
        assert len(run.stage_results["writing"].errors) == 4

        stored = await pipeline.store.get(artifact.id)
        assert stored.status == ArtifactStatus.FOUNDATIONS_APPROVAL
        assert stored.content == FOUR_SECTION_SKELETON
        assert pipeline.state_machine.get_checkpoint(artifact.id) is None


class TestFailureHandling:
    """Tests for rollback rules and optional stages."""

    @pytest.mark.asyncio
    async def test_recoverable_provider_error_retried_then_reported(self, pipeline, provider, sleep):
        provider.set_error(ProviderError("connection reset"))
        artifact = await pipeline.store.create(ArtifactFactory.create())

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.success is False
        assert run.failed_stage == "research"
        assert run.error.category == ErrorCategory.AI_PROVIDER_ERROR
        assert run.error.recoverable is True
        assert provider.call_count == 4
        assert len(sleep.delays) == 3
        assert (await pipeline.store.get(artifact.id)).status == ArtifactStatus.DRAFT

    @pytest.mark.asyncio
    async def test_non_recoverable_error_restores_content(self, pipeline):
        artifact = await pipeline.store.create(
            ArtifactFactory.create(status=ArtifactStatus.HUMANITY_CHECKING, content="original text")
        )
        pipeline.invoker.register(
            "humanity_check",
            ContentScribblingStage(pipeline.store, ContentFilterError("blocked")),
        )

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.error.category == ErrorCategory.AI_CONTENT_FILTER
        assert run.rolled_back_to == ArtifactStatus.HUMANITY_CHECKING
        stored = await pipeline.store.get(artifact.id)
        assert stored.content == "original text"
        assert stored.status == ArtifactStatus.HUMANITY_CHECKING

    @pytest.mark.asyncio
    async def test_recoverable_error_restores_status_and_content(self, pipeline, sleep):
        artifact = await pipeline.store.create(ArtifactFactory.at_approval())
        handler = ContentScribblingStage(
            pipeline.store, ProviderError("down"), move_to=ArtifactStatus.WRITING
        )
        pipeline.invoker.register("writing", handler)

        run = await pipeline.state_machine.advance(artifact.id)

        assert handler.calls == 4
        assert run.rolled_back_to == ArtifactStatus.FOUNDATIONS_APPROVAL
        stored = await pipeline.store.get(artifact.id)
        assert stored.status == ArtifactStatus.FOUNDATIONS_APPROVAL
        assert stored.content == FOUR_SECTION_SKELETON
        assert pipeline.state_machine.get_checkpoint(artifact.id) is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_keeps_skeleton(self, pipeline, sleep):
        artifact = await pipeline.store.create(ArtifactFactory.at_approval())
        pipeline.invoker.register(
            "writing",
            ContentScribblingStage(pipeline.store, KeyError("heading"), move_to=ArtifactStatus.WRITING),
        )

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.error.category == ErrorCategory.TOOL_EXECUTION_FAILED
        assert run.error.recoverable is True
        stored = await pipeline.store.get(artifact.id)
        assert stored.status == ArtifactStatus.FOUNDATIONS_APPROVAL
        assert stored.content == FOUR_SECTION_SKELETON

    @pytest.mark.asyncio
    async def test_optional_visuals_failure_still_reaches_ready(self, pipeline, provider):
        provider.set_error(ContentFilterError("refused"))
        artifact = await pipeline.store.create(
            ArtifactFactory.create(status=ArtifactStatus.CREATING_VISUALS, content="## Hook\n\nBody")
        )

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.success is True
        assert run.optional_failures == ["visuals"]
        assert run.stages_completed == []
        assert run.final_status == ArtifactStatus.READY

    @pytest.mark.asyncio
    async def test_concurrent_modification_is_not_rolled_back(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())
        pipeline.invoker.register("research", RacingStage(pipeline.store))

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.error.category == ErrorCategory.CONCURRENT_MODIFICATION
        assert run.rolled_back_to is None
        assert (await pipeline.store.get(artifact.id)).status == ArtifactStatus.RESEARCH
        assert pipeline.state_machine.get_checkpoint(artifact.id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ArtifactStatus.READY, ArtifactStatus.WRITING])
    async def test_no_stage_for_status(self, pipeline, provider, status):
        artifact = await pipeline.store.create(ArtifactFactory.create(status=status))

        run = await pipeline.state_machine.advance(artifact.id)

        assert run.success is False
        assert run.error.category == ErrorCategory.INVALID_STATUS
        assert run.final_status == status
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_missing_artifact(self, pipeline):
        run = await pipeline.state_machine.advance("does-not-exist")
        assert run.error.category == ErrorCategory.ARTIFACT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_shared_breaker_opens_across_runs(self, provider, sleep):
        provider.set_error(ProviderError("down"))
        pipeline = make_pipeline(provider, sleep=sleep, circuit_failure_threshold=2)
        first = await pipeline.store.create(ArtifactFactory.create())
        second = await pipeline.store.create(ArtifactFactory.create())

        run = await pipeline.state_machine.advance(first.id)
        assert run.error.category == ErrorCategory.CIRCUIT_OPEN
        assert provider.call_count == 2

        run = await pipeline.state_machine.advance(second.id)
        assert run.error.category == ErrorCategory.CIRCUIT_OPEN
        assert provider.call_count == 2
        assert pipeline.health()["status"] == "unhealthy"


class TestApprovalAndPublishing:
    """Tests for the externally driven transitions."""

    @pytest.mark.asyncio
    async def test_approve_from_draft_rejected(self, pipeline, provider):
        artifact = await pipeline.store.create(ArtifactFactory.create())

        run = await pipeline.state_machine.approve(artifact.id)

        assert run.success is False
        assert run.error.category == ErrorCategory.INVALID_STATUS
        assert (await pipeline.store.get(artifact.id)).status == ArtifactStatus.DRAFT
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_publish_and_edit(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create(status=ArtifactStatus.READY))

        published = await pipeline.state_machine.publish(artifact.id)
        assert published.status == ArtifactStatus.PUBLISHED

        edited = await pipeline.state_machine.record_edit(artifact.id, "fixed a typo")
        assert edited.status == ArtifactStatus.READY
        assert edited.content == "fixed a typo"

    @pytest.mark.asyncio
    async def test_publish_requires_ready(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create())
        with pytest.raises(InvalidStatusError):
            await pipeline.state_machine.publish(artifact.id)

    @pytest.mark.asyncio
    async def test_edit_before_ready_keeps_status(self, pipeline):
        artifact = await pipeline.store.create(ArtifactFactory.create(status=ArtifactStatus.SKELETON))
        edited = await pipeline.state_machine.record_edit(artifact.id, "## Only section")
        assert edited.status == ArtifactStatus.SKELETON


class TestMockMode:
    """Tests for a run served entirely from canned responses."""

    @pytest.mark.asyncio
    async def test_full_run_without_provider_calls(self, provider, sleep):
        pipeline = make_pipeline(provider, sleep=sleep, mock_all_stages="MOCK")
        artifact = await pipeline.store.create(ArtifactFactory.create(title="Mocked"))

        run = await pipeline.state_machine.advance(artifact.id)
        assert run.waiting_for_approval is True
        assert (await pipeline.store.get(artifact.id)).content.startswith("# Mocked")

        run = await pipeline.state_machine.approve(artifact.id)

        assert run.success is True
        assert run.final_status == ArtifactStatus.READY
        assert all(r.mocked for r in run.stage_results.values())
        assert provider.call_count == 0

        stored = await pipeline.store.get(artifact.id)
        assert "Every team hits the moment where Mocked" in stored.content
        assert stored.writing_metadata["sections_written"] == 5
        assert len(stored.visuals_metadata["image_needs"]) == 1
        assert len(stored.metadata["research"]) == 2
