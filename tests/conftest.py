# Pytest configuration and fixtures
import os

import pytest

from content_pipeline.artifacts.store import InMemoryArtifactStore
from tests.fixtures import ArtifactFactory, FakeClock, MockGenerationProvider, RecordingSleep


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Setup test environment variables."""
    os.environ.setdefault("OLLAMA_URL", "http://localhost:11434")
    os.environ.setdefault("LOG_JSON", "false")


@pytest.fixture(autouse=True)
def reset_factories():
    ArtifactFactory.reset()


@pytest.fixture
def provider():
    """Scripted generation provider."""
    return MockGenerationProvider()


@pytest.fixture
def store():
    return InMemoryArtifactStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()
