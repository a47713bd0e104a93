"""Product scoring for Gift Finder."""

from gift_finder.scoring.product_scorer import (
    ProductScorer,
    apply_scores,
    parse_scoring_response,
    sort_by_score,
    uniform_fallback,
)

__all__ = [
    "ProductScorer",
    "apply_scores",
    "parse_scoring_response",
    "sort_by_score",
    "uniform_fallback",
]
