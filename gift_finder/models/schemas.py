"""
Pydantic models and schemas for Gift Finder.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - RecipientProfile: Pipeline input
    - Product / ExtractedProducts: Browser extraction output
    - SearchResult: One per search session, success or failure
    - ProductScore / ScoredProduct: Scoring response and output
    - QueryBatch / ScoringOutcome / GiftRecommendations: Tagged step outcomes
    - PipelineEvent: Status events for the rendering layer
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Self
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


class FrozenModel(BaseModel):
    """Immutable model; instances can be handed between tasks safely."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# Enums
# =============================================================================

class RecipientCategory(str, Enum):
    """Who the gift is for."""
    MUM = "Mum"
    DAD = "Dad"
    SISTER = "Sister"
    BROTHER = "Brother"
    FRIEND = "Friend"
    BOSS = "Boss"


class SessionState(str, Enum):
    """Lifecycle states of a single search session."""
    CREATED = "created"
    INITIALIZED = "initialized"
    NAVIGATED = "navigated"
    SEARCHED = "searched"
    EXTRACTED = "extracted"
    FAILED = "failed"
    CLOSED = "closed"


class SessionStatus(str, Enum):
    """Terminal outcome of a search session."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class QuerySource(str, Enum):
    """Where the search terms of a run came from."""
    GENERATED = "generated"
    FALLBACK = "fallback"


class ScoringTier(str, Enum):
    """Which scoring path produced the final scores."""
    NONE = "none"
    MODEL = "model"
    UNIFORM_FALLBACK = "uniform_fallback"


class PipelineStatus(str, Enum):
    """Terminal outcome of a pipeline run."""
    COMPLETED = "completed"
    NO_PRODUCTS = "no_products"


class EventKind(str, Enum):
    """Kinds of status events emitted to the rendering layer."""
    QUERIES_READY = "queries_ready"
    SESSION_STATE = "session_state"
    SESSION_LIVE_VIEW = "session_live_view"
    SEARCHES_COMPLETE = "searches_complete"
    SCORING_STARTED = "scoring_started"
    SCORING_COMPLETE = "scoring_complete"
    NO_PRODUCTS = "no_products"
    COMPLETE = "complete"


# =============================================================================
# Constants
# =============================================================================

MIN_DESCRIPTION_LENGTH = 5
MAX_PRODUCTS_PER_SEARCH = 3
MAX_REASON_LENGTH = 100
MIN_SCORE = 0
MAX_SCORE = 10

NEUTRAL_FALLBACK_SCORE = 5
NEUTRAL_FALLBACK_REASON = "Scoring failed - using neutral score"
MISSING_SCORE = 0
MISSING_SCORE_REASON = "No scoring available"


# =============================================================================
# Validators (Reusable)
# =============================================================================

def validate_absolute_url(url: str) -> str:
    """Validate that a URL is absolute http(s) with a host."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(
            f"Invalid product URL: '{url}'. "
            "Must be an absolute http(s) URL"
        )
    return url.strip()


# =============================================================================
# Input Models
# =============================================================================

class RecipientProfile(FrozenModel):
    """
    Who the gift is for and what they are like.

    Example:
        >>> profile = RecipientProfile(category="Dad", description="loves cooking and grilling")
        >>> profile.category
        <RecipientCategory.DAD: 'Dad'>
    """

    category: RecipientCategory = Field(
        ...,
        description="Relationship to the recipient",
    )
    description: str = Field(
        ...,
        min_length=MIN_DESCRIPTION_LENGTH,
        description="Interests, hobbies, age and similar details",
        examples=["loves cooking and grilling"],
    )


# =============================================================================
# Product Models
# =============================================================================

class Product(FrozenModel):
    """A product extracted from a search results page."""

    title: str = Field(..., min_length=1, description="the title/name of the product")
    url: str = Field(..., description="the full URL link to the product page")
    price: str = Field(..., description="the price of the product (include currency symbol)")
    rating: str = Field(
        ...,
        description="the star rating or number of reviews (e.g., '4.5 stars' or '123 reviews')",
    )

    @field_validator("url")
    @classmethod
    def validate_product_url(cls, v: str) -> str:
        return validate_absolute_url(v)

    def prompt_line(self) -> str:
        """One-line summary used in scoring prompts."""
        return f"{self.title} - {self.price} - {self.rating}"


class ExtractedProducts(BaseModel):
    """Structured extraction schema for a search results page."""

    products: list[Product] = Field(
        default_factory=list,
        description="array of the first 3 products from search results",
    )

    @field_validator("products", mode="before")
    @classmethod
    def cap_products(cls, v: Any) -> Any:
        """Keep only the first products the page lists."""
        if isinstance(v, list):
            return v[:MAX_PRODUCTS_PER_SEARCH]
        return v


class ScoredProduct(Product):
    """A product annotated with its AI score and reason."""

    ai_score: int = Field(..., ge=MIN_SCORE, le=MAX_SCORE)
    ai_reason: str = Field(..., max_length=MAX_REASON_LENGTH)

    @classmethod
    def from_product(cls, product: Product, score: int, reason: str) -> "ScoredProduct":
        """Build a scored copy without touching the extracted fields."""
        return cls(**product.model_dump(), ai_score=score, ai_reason=reason[:MAX_REASON_LENGTH])


# =============================================================================
# Scoring Response Schema
# =============================================================================

class ProductScore(PydanticBaseModel):
    """One entry of the model's scoring response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_index: int = Field(..., alias="productIndex", ge=1)
    score: int = Field(..., ge=MIN_SCORE, le=MAX_SCORE)
    reason: str = Field(...)

    @field_validator("reason")
    @classmethod
    def truncate_reason(cls, v: str) -> str:
        return v.strip()[:MAX_REASON_LENGTH]


SCORING_RESPONSE_ADAPTER: TypeAdapter[list[ProductScore]] = TypeAdapter(list[ProductScore])


# =============================================================================
# Step Outcomes
# =============================================================================

class SearchResult(FrozenModel):
    """Outcome of one search session. Always produced, even on failure."""

    query: str
    session_index: int = Field(..., ge=1)
    products: tuple[Product, ...] = Field(default_factory=tuple)
    status: SessionStatus = SessionStatus.SUCCEEDED
    error: Optional[str] = None
    failure_category: Optional[str] = None
    session_id: Optional[str] = None
    states: tuple[SessionState, ...] = Field(default_factory=tuple)
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == SessionStatus.SUCCEEDED


class QueryBatch(FrozenModel):
    """Search terms for a run and where they came from."""

    queries: tuple[str, ...]
    source: QuerySource = QuerySource.GENERATED
    error: Optional[str] = None


class ScoringOutcome(FrozenModel):
    """Scored products plus which scoring tier produced them."""

    products: tuple[ScoredProduct, ...] = Field(default_factory=tuple)
    tier: ScoringTier = ScoringTier.NONE
    missing_indices: tuple[int, ...] = Field(default_factory=tuple)
    error: Optional[str] = None


class GiftRecommendations(BaseModel):
    """Final outcome of a pipeline run."""

    run_id: str = Field(default_factory=lambda: str(uuid4()))
    profile: RecipientProfile
    status: PipelineStatus
    query_batch: QueryBatch
    search_results: list[SearchResult] = Field(default_factory=list)
    scoring: ScoringOutcome = Field(default_factory=ScoringOutcome)
    top_products: list[ScoredProduct] = Field(default_factory=list)
    total_products: int = 0
    duration_ms: int = 0
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def failed_sessions(self) -> list[SearchResult]:
        return [r for r in self.search_results if not r.succeeded]


class PipelineEvent(BaseModel):
    """A status event for the rendering layer."""

    kind: EventKind
    message: str
    session_index: Optional[int] = None
    progress_percent: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)
