"""Concurrent browser search for Gift Finder."""

from gift_finder.search.orchestrator import SearchOrchestrator
from gift_finder.search.session import (
    ALLOWED_TRANSITIONS,
    InvalidTransitionError,
    SearchSession,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "SearchOrchestrator",
    "SearchSession",
]
