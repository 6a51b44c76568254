"""
Test Helpers and Utilities.
Builders for a fully wired pipeline that never sleeps or touches the network.
"""

from typing import Any

from config.settings import Settings
from content_pipeline.artifacts.store import InMemoryArtifactStore
from content_pipeline.bootstrap import Pipeline, build_pipeline
from tests.fixtures.mocks import FakeClock, MockGenerationProvider, RecordingSleep


def make_settings(**overrides: Any) -> Settings:
    """Settings with test defaults, ignoring any .env file."""
    values = {
        "mock_all_stages": "API",
        "retry_base_delay_ms": 10,
        "retry_max_delay_ms": 50,
        "mock_capture_responses": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_pipeline(
    provider: MockGenerationProvider = None,
    clock: FakeClock = None,
    sleep: RecordingSleep = None,
    **setting_overrides: Any,
) -> Pipeline:
    return build_pipeline(
        make_settings(**setting_overrides),
        store=InMemoryArtifactStore(),
        provider=provider or MockGenerationProvider(),
        sleep=sleep or RecordingSleep(),
        clock=clock or FakeClock(),
    )
