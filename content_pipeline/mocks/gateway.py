"""
Mock Gateway.

Lets the stage invoker substitute deterministic canned responses for real
stage work. Configuration comes from Settings:

- MOCK_ALL_STAGES=API forces real calls for every stage
- MOCK_ALL_STAGES=MOCK forces canned responses for every stage
- MOCK_ALL_STAGES=PER_TOGGLE consults the per-stage MOCK_<STAGE>_STAGE toggle

Canned responses are looked up as ``<MOCK_DATA_DIR>/<stage>.<variant>.json``
and fall back to the built-in defaults below. A canned response is the
``data`` of the resulting StageResult; its optional ``content`` and
``metadata`` keys stand in for the writes the real handler would make.
"""

import asyncio
import json
import random
from copy import deepcopy
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from config.settings import Settings
from content_pipeline.artifacts.models import StageResult
from content_pipeline.mocks.capture import capture_response
from content_pipeline.mocks.replacer import apply_replacements, missing_placeholders
from content_pipeline.utils.structured_logging import get_logger
from content_pipeline.utils.tracing import generate_trace_id

logger = get_logger("mock_gateway")


MOCK_SKELETON = """# {{title}}

## Hook
[Open with a concrete moment that frames the problem]

## Main Point 1
[Expand on the first key point]

## Main Point 2
[Expand on the second key point]

## Main Point 3
[Expand on the third key point]

## Conclusion
[Summarize key takeaways]"""

MOCK_WRITTEN = """## Hook

Every team hits the moment where {{title}} stops being a side project.

---

## Main Point 1

The first step is admitting the current process does not scale.

---

## Main Point 2

Small, repeatable wins beat a grand rewrite.

---

## Main Point 3

Measure what changed, not what was shipped.

---

## Conclusion

Start small, keep the loop tight, and write down what you learn."""


DEFAULT_MOCKS: Dict[str, Dict[str, Any]] = {
    "research": {
        "sources_found": 2,
        "metadata": {
            "research": [
                {
                    "source_name": "Industry report",
                    "source_url": "https://example.com/report",
                    "excerpt": "Background research for {{title}}.",
                    "relevance_score": "{{randomScore}}",
                },
                {
                    "source_name": "Practitioner interview",
                    "source_url": "https://example.com/interview",
                    "excerpt": "First-hand notes on {{title}}.",
                    "relevance_score": "{{randomScore}}",
                },
            ],
        },
    },
    "foundations": {
        "metadata": {
            "writing_characteristics": {
                "voice": "first person",
                "sentence_length": "short",
                "tone": "{{tone}}",
            },
        },
    },
    "skeleton": {
        "sections": 5,
        "content": MOCK_SKELETON,
    },
    "writing": {
        "sections_written": 5,
        "content": MOCK_WRITTEN,
        "metadata": {
            "writing_metadata": {
                "trace_id": "{{traceId}}",
                "sections_written": 5,
                "section_errors": 0,
                "section_timings": [],
                "tone": "{{tone}}",
                "completed_at": "{{timestamp}}",
            },
        },
    },
    "humanity_check": {
        "patterns_checked": 24,
        "status": "creating_visuals",
    },
    "visuals": {
        "image_count": 1,
        "metadata": {
            "visuals_metadata": {
                "image_needs": [
                    {
                        "id": "{{uuid}}",
                        "placement_after": "Hook",
                        "description": "Featured image for {{title}}",
                        "purpose": "hero",
                        "style": "illustration",
                        "approved": False,
                    },
                ],
            },
        },
    },
}


class MockGateway:
    """
    Decides per stage whether to mock and serves canned stage results.

    Usage:
        gateway = MockGateway(settings)
        if gateway.should_mock("skeleton"):
            result = await gateway.get_mock_response("skeleton", "blog", params)
    """

    def __init__(
        self,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self._sleep = sleep
        self._cache: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._capture_tasks: Set[asyncio.Task] = set()

        logger.info(
            "Mock gateway initialized",
            master_toggle=settings.mock_all_stages,
            capture_enabled=settings.mock_capture_responses,
            data_dir=str(settings.mock_data_dir) if settings.mock_data_dir else None,
        )

    def should_mock(self, stage_id: str) -> bool:
        """Master toggle first, per-stage toggle only under PER_TOGGLE."""
        master = self.settings.mock_all_stages
        if master == "API":
            return False
        if master == "MOCK":
            return True
        return self.settings.stage_mock_mode(stage_id) == "MOCK"

    async def get_mock_response(
        self,
        stage_id: str,
        variant: str,
        params: Dict[str, Any],
    ) -> StageResult:
        """
        Canned StageResult for a stage, with placeholders filled from params.
        """
        raw = self._load(stage_id, variant)

        missing = missing_placeholders(raw, params)
        if missing:
            logger.warning(
                "Missing params for mock placeholders",
                stage_id=stage_id,
                variant=variant,
                missing=missing,
            )

        data = apply_replacements(raw, params)
        delay_ms = await self._simulate_delay()

        logger.debug(
            "Returning mock response",
            stage_id=stage_id,
            variant=variant,
            delay_ms=delay_ms,
            param_keys=sorted(params.keys()),
        )
        return StageResult(
            success=True,
            trace_id=params.get("trace_id") or generate_trace_id("mock"),
            duration_ms=delay_ms,
            data=data,
            mocked=True,
        )

    def capture_real_response(
        self,
        stage_id: str,
        variant: str,
        params: Dict[str, Any],
        result: StageResult,
    ) -> None:
        """
        Schedule capture of a real response. Never blocks and never raises.
        """
        if not self.settings.mock_capture_responses:
            return
        try:
            payload = result.model_dump(mode="json", by_alias=True)
            task = asyncio.get_running_loop().create_task(
                asyncio.to_thread(
                    capture_response,
                    self.settings.mock_capture_dir,
                    stage_id,
                    variant,
                    dict(params),
                    payload,
                )
            )
            self._capture_tasks.add(task)
            task.add_done_callback(self._capture_tasks.discard)
        except Exception as e:
            logger.error("Could not schedule response capture", stage_id=stage_id, error=str(e))

    async def drain_captures(self):
        """Wait for scheduled captures to finish."""
        if self._capture_tasks:
            await asyncio.gather(*list(self._capture_tasks), return_exceptions=True)

    def _load(self, stage_id: str, variant: str) -> Dict[str, Any]:
        key = (stage_id, variant)
        if key not in self._cache:
            self._cache[key] = self._read_file(stage_id, variant) or self._default(stage_id)
        return deepcopy(self._cache[key])

    def _read_file(self, stage_id: str, variant: str) -> Optional[Dict[str, Any]]:
        data_dir = self.settings.mock_data_dir
        if not data_dir:
            return None
        file_path = Path(data_dir) / f"{stage_id}.{variant}.json"
        if not file_path.exists():
            logger.warning(
                "Mock data file not found, using default",
                stage_id=stage_id,
                variant=variant,
                file_path=str(file_path),
            )
            return None
        try:
            with open(file_path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Mock data file unreadable, using default", file_path=str(file_path), error=str(e))
            return None

    @staticmethod
    def _default(stage_id: str) -> Dict[str, Any]:
        return DEFAULT_MOCKS.get(stage_id, {"message": f"Mock response for {stage_id}"})

    async def _simulate_delay(self) -> int:
        low = self.settings.mock_delay_min_ms
        high = max(low, self.settings.mock_delay_max_ms)
        delay_ms = random.randint(low, high)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)
        return delay_ms
