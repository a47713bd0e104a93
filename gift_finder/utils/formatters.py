"""
Result formatting utilities.

Renders a ``GiftRecommendations`` outcome as Markdown or JSON for the CLI.
"""

import json
from typing import Any, Sequence

from gift_finder.models.schemas import (
    GiftRecommendations,
    PipelineStatus,
    QuerySource,
    ScoredProduct,
    ScoringTier,
)

MEDALS = ("🥇", "🥈", "🥉")
MAX_TITLE_LENGTH = 60


def medal_for(rank: int) -> str:
    """Medal for a 1-based rank, or ``#rank`` past the podium."""
    return MEDALS[rank - 1] if 1 <= rank <= len(MEDALS) else f"#{rank}"


def _cell(text: str) -> str:
    return text.replace("|", "-").replace("\n", " ")


def format_top_products_table(products: Sequence[ScoredProduct]) -> str:
    """
    Create formatted markdown table for ranked products.

    | Rank | Product | Price | Rating | Score | Reason |
    |------|---------|-------|--------|-------|--------|
    | 🥇 | Grill Set | €39.99 | 4.7 | 9/10 | Perfect for a BBQ lover |
    """
    if not products:
        return "*No products found.*"

    header = (
        "| Rank | Product | Price | Rating | Score | Reason |\n"
        "|------|---------|-------|--------|-------|--------|"
    )
    rows = []
    for rank, product in enumerate(products, 1):
        title = product.title
        if len(title) > MAX_TITLE_LENGTH:
            title = title[:MAX_TITLE_LENGTH] + "..."
        rows.append(
            f"| {medal_for(rank)} | [{_cell(title)}]({product.url}) | {_cell(product.price)} "
            f"| {_cell(product.rating)} | {product.ai_score}/10 | {_cell(product.ai_reason)} |"
        )

    return header + "\n" + "\n".join(rows)


def format_recommendations_markdown(result: GiftRecommendations) -> str:
    """
    Render the full outcome of a run.

    Structure:
    # Gift Ideas for {recipient}
    ## Search Queries
    ## Searches
    ## Top Picks
    """
    profile = result.profile
    batch = result.query_batch

    query_lines = "\n".join(f"{i}. {q}" for i, q in enumerate(batch.queries, 1))
    if batch.source == QuerySource.FALLBACK:
        query_lines += "\n\n*Query generation failed; fallback queries were used.*"

    search_lines = []
    for search in result.search_results:
        if search.succeeded:
            search_lines.append(
                f"- Session {search.session_index} (`{search.query}`): "
                f"{len(search.products)} products"
            )
        else:
            search_lines.append(
                f"- Session {search.session_index} (`{search.query}`): failed ({search.error})"
            )
    searches = "\n".join(search_lines) or "*No searches were run.*"

    if result.status == PipelineStatus.NO_PRODUCTS:
        top_section = "*No products found to score.*"
    else:
        top_section = format_top_products_table(result.top_products)
        if result.scoring.tier == ScoringTier.UNIFORM_FALLBACK:
            top_section += "\n\n*Scoring failed; all products received a neutral score.*"

    timestamp = result.completed_at.strftime("%Y-%m-%d %H:%M UTC")

    return f"""# Gift Ideas for {profile.category.value}

> {profile.description}

## Search Queries
{query_lines}

## Searches
{searches}

Total products found: {result.total_products}

## Top Picks
{top_section}

---
Generated on: {timestamp}
Run ID: {result.run_id}
"""


def recommendations_to_dict(result: GiftRecommendations) -> dict[str, Any]:
    """Plain-data view of a run, keyed the way the CLI prints it."""
    return {
        "run_id": result.run_id,
        "status": result.status.value,
        "recipient": {
            "category": result.profile.category.value,
            "description": result.profile.description,
        },
        "queries": list(result.query_batch.queries),
        "query_source": result.query_batch.source.value,
        "searches": [
            {
                "session_index": s.session_index,
                "query": s.query,
                "status": s.status.value,
                "products": len(s.products),
                "error": s.error,
            }
            for s in result.search_results
        ],
        "total_products": result.total_products,
        "scoring_tier": result.scoring.tier.value,
        "top_products": [
            {
                "title": p.title,
                "url": p.url,
                "price": p.price,
                "rating": p.rating,
                "aiScore": p.ai_score,
                "aiReason": p.ai_reason,
            }
            for p in result.top_products
        ],
        "duration_ms": result.duration_ms,
    }


def format_recommendations_json(result: GiftRecommendations) -> str:
    """JSON rendering of ``recommendations_to_dict``."""
    return json.dumps(recommendations_to_dict(result), indent=2, ensure_ascii=False)
