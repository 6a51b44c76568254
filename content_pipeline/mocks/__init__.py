"""Canned stage responses for disconnected runs."""

from content_pipeline.mocks.gateway import DEFAULT_MOCKS, MockGateway

__all__ = ["DEFAULT_MOCKS", "MockGateway"]
