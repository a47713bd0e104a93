"""Data models for Gift Finder."""

from gift_finder.models.schemas import (
    BaseModel,
    EventKind,
    ExtractedProducts,
    GiftRecommendations,
    PipelineEvent,
    PipelineStatus,
    Product,
    ProductScore,
    QueryBatch,
    QuerySource,
    RecipientCategory,
    RecipientProfile,
    ScoredProduct,
    ScoringOutcome,
    ScoringTier,
    SearchResult,
    SessionState,
    SessionStatus,
    MISSING_SCORE,
    MISSING_SCORE_REASON,
    NEUTRAL_FALLBACK_REASON,
    NEUTRAL_FALLBACK_SCORE,
)

__all__ = [
    "BaseModel",
    "EventKind",
    "ExtractedProducts",
    "GiftRecommendations",
    "PipelineEvent",
    "PipelineStatus",
    "Product",
    "ProductScore",
    "QueryBatch",
    "QuerySource",
    "RecipientCategory",
    "RecipientProfile",
    "ScoredProduct",
    "ScoringOutcome",
    "ScoringTier",
    "SearchResult",
    "SessionState",
    "SessionStatus",
    "MISSING_SCORE",
    "MISSING_SCORE_REASON",
    "NEUTRAL_FALLBACK_REASON",
    "NEUTRAL_FALLBACK_SCORE",
]
