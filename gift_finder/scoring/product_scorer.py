"""
Batch product scoring.

Sends every product of a run to Claude in one call and attaches the returned
score and reason to each. Two fallback tiers keep the pipeline going when the
model misbehaves:

    - per item: a product the response does not mention scores 0,
      "No scoring available"
    - uniform: a response that cannot be parsed into the expected schema (or
      a failed call) scores every product 5,
      "Scoring failed - using neutral score"
"""

from __future__ import annotations

import json
from typing import Optional, Sequence

from pydantic import ValidationError

from gift_finder.config.settings import Settings, get_settings
from gift_finder.models.schemas import (
    MISSING_SCORE,
    MISSING_SCORE_REASON,
    NEUTRAL_FALLBACK_REASON,
    NEUTRAL_FALLBACK_SCORE,
    SCORING_RESPONSE_ADAPTER,
    Product,
    ProductScore,
    RecipientProfile,
    ScoredProduct,
    ScoringOutcome,
    ScoringTier,
)
from gift_finder.scoring.prompts import SCORING_MAX_TOKENS, format_scoring_prompt
from gift_finder.services.llm_service import ClaudeService, TaskType, strip_code_fences
from gift_finder.utils.errors import ScoringParseError
from gift_finder.utils.logger import get_logger

logger = get_logger(__name__)


def parse_scoring_response(text: str) -> list[ProductScore]:
    """
    Parse the model's scoring reply.

    Code fences are stripped first. The result must be a JSON array of
    ``{productIndex, score, reason}`` objects.

    Raises:
        ScoringParseError: On invalid JSON or a schema mismatch
    """
    sanitized = strip_code_fences(text)
    try:
        data = json.loads(sanitized)
    except json.JSONDecodeError as e:
        raise ScoringParseError(f"Scoring response is not valid JSON: {e}", raw_response=text) from e

    try:
        return SCORING_RESPONSE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ScoringParseError(
            f"Scoring response does not match schema: {e.error_count()} errors",
            raw_response=text,
        ) from e


def apply_scores(
    products: Sequence[Product],
    scores: Sequence[ProductScore],
) -> tuple[list[ScoredProduct], list[int]]:
    """
    Attach scores to products by 1-based index.

    Returns:
        Scored products sorted by score (stable) and the indices that had no score
    """
    by_index: dict[int, ProductScore] = {}
    for entry in scores:
        # First entry for an index wins
        by_index.setdefault(entry.product_index, entry)

    scored: list[ScoredProduct] = []
    missing: list[int] = []
    for index, product in enumerate(products, start=1):
        entry = by_index.get(index)
        if entry is None:
            missing.append(index)
            scored.append(ScoredProduct.from_product(product, MISSING_SCORE, MISSING_SCORE_REASON))
        else:
            scored.append(ScoredProduct.from_product(product, entry.score, entry.reason))

    return sort_by_score(scored), missing


def sort_by_score(products: Sequence[ScoredProduct]) -> list[ScoredProduct]:
    """Highest score first; ties keep their presentation order."""
    return sorted(products, key=lambda p: p.ai_score, reverse=True)


def uniform_fallback(products: Sequence[Product]) -> list[ScoredProduct]:
    """Neutral score for every product, in presentation order."""
    return [
        ScoredProduct.from_product(product, NEUTRAL_FALLBACK_SCORE, NEUTRAL_FALLBACK_REASON)
        for product in products
    ]


class ProductScorer:
    """Scores products against a recipient profile in a single model call."""

    def __init__(
        self,
        llm_service: ClaudeService,
        settings: Optional[Settings] = None,
    ):
        self.llm = llm_service
        self.settings = settings or get_settings()

    async def score(
        self,
        products: Sequence[Product],
        profile: RecipientProfile,
    ) -> list[ScoredProduct]:
        """Scored products, highest first."""
        outcome = await self.score_products(products, profile)
        return list(outcome.products)

    async def score_products(
        self,
        products: Sequence[Product],
        profile: RecipientProfile,
    ) -> ScoringOutcome:
        """
        Score products and report which tier produced the scores.

        Never raises for model or parse failures.
        """
        if not products:
            logger.info("No products to score")
            return ScoringOutcome(tier=ScoringTier.NONE)

        logger.info("Scoring products", count=len(products), recipient=profile.category.value)

        prompt = format_scoring_prompt(products, profile)
        try:
            response = await self.llm.complete(
                prompt,
                max_tokens=SCORING_MAX_TOKENS,
                temperature=self.settings.scoring_temperature,
                task_type=TaskType.SCORING,
            )
            scores = parse_scoring_response(response)
        except Exception as e:
            logger.error(
                "Scoring failed, using neutral scores",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ScoringOutcome(
                products=uniform_fallback(products),
                tier=ScoringTier.UNIFORM_FALLBACK,
                error=f"{type(e).__name__}: {e}",
            )

        scored, missing = apply_scores(products, scores)
        if missing:
            logger.warning("Scoring response omitted products", missing_indices=missing)

        logger.info(
            "Products scored",
            count=len(scored),
            top_score=scored[0].ai_score if scored else None,
        )
        return ScoringOutcome(
            products=scored,
            tier=ScoringTier.MODEL,
            missing_indices=missing,
        )
