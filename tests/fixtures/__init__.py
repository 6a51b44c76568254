"""
Test Fixtures Package.
Provides mock providers, data factories, and pipeline builders.
"""

from tests.fixtures.factories import (
    ArtifactFactory,
    CustomerFactory,
    InMemoryCustomerDataSource,
    FOUR_SECTION_SKELETON,
)
from tests.fixtures.mocks import (
    MockGenerationProvider,
    FakeClock,
    RecordingSleep,
)
from tests.fixtures.helpers import (
    make_settings,
    make_pipeline,
)

__all__ = [
    # Factories
    "ArtifactFactory",
    "CustomerFactory",
    "InMemoryCustomerDataSource",
    "FOUR_SECTION_SKELETON",
    # Mocks
    "MockGenerationProvider",
    "FakeClock",
    "RecordingSleep",
    # Helpers
    "make_settings",
    "make_pipeline",
]
