"""Bounded prompt context assembled from customer records."""

from content_pipeline.context.assembler import (
    ContextAssembler,
    CustomerDataSource,
    TRUNCATION_STEPS,
    compute_health_signals,
)

__all__ = [
    "ContextAssembler",
    "CustomerDataSource",
    "TRUNCATION_STEPS",
    "compute_health_signals",
]
