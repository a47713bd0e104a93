"""Pipeline module for Gift Finder."""

from gift_finder.pipeline.orchestrator import (
    GiftFinderPipeline,
    PipelineError,
    PipelineStateDict,
    STEP_WEIGHTS,
    find_gifts,
)

__all__ = [
    "GiftFinderPipeline",
    "PipelineError",
    "PipelineStateDict",
    "STEP_WEIGHTS",
    "find_gifts",
]
