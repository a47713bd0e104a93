"""
Gift Finder.

Discovers gift recommendations by generating search terms with Claude,
running them concurrently against a retail site in isolated browser
sessions, and ranking the combined products in a single scoring pass.
"""

__version__ = "1.0.0"
__author__ = "Gift Finder Team"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the GiftFinderPipeline class (lazy import)."""
    from gift_finder.pipeline.orchestrator import GiftFinderPipeline
    return GiftFinderPipeline

__all__ = ["get_pipeline", "__version__"]
