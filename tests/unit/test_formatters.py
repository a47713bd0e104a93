import json

import pytest

from gift_finder.models.schemas import (
    GiftRecommendations,
    PipelineStatus,
    QueryBatch,
    QuerySource,
    ScoredProduct,
    ScoringOutcome,
    ScoringTier,
    SearchResult,
    SessionStatus,
)
from gift_finder.utils.formatters import (
    format_recommendations_json,
    format_recommendations_markdown,
    format_top_products_table,
    medal_for,
    recommendations_to_dict,
)


@pytest.fixture
def scored_products(sample_products):
    return [
        ScoredProduct.from_product(p, score, f"Reason {i}")
        for i, (p, score) in enumerate(zip(sample_products, (9, 7, 5)), 1)
    ]


@pytest.fixture
def completed_result(dad_profile, sample_products, scored_products):
    return GiftRecommendations(
        run_id="run-1",
        profile=dad_profile,
        status=PipelineStatus.COMPLETED,
        query_batch=QueryBatch(queries=["spice rack", "chef knife"]),
        search_results=[
            SearchResult(query="spice rack", session_index=1, products=sample_products),
            SearchResult(
                query="chef knife",
                session_index=2,
                status=SessionStatus.FAILED,
                error="SessionError: act failed",
            ),
        ],
        scoring=ScoringOutcome(products=scored_products, tier=ScoringTier.MODEL),
        top_products=scored_products,
        total_products=3,
    )


def test_medal_for():
    assert [medal_for(r) for r in (1, 2, 3)] == ["🥇", "🥈", "🥉"]
    assert medal_for(4) == "#4"


def test_top_products_table(scored_products):
    table = format_top_products_table(scored_products)
    lines = table.splitlines()
    assert lines[0].startswith("| Rank | Product |")
    assert len(lines) == 5
    assert "🥇" in lines[2] and "9/10" in lines[2]
    assert "(https://firebox.eu/products/item-1)" in lines[2]


def test_top_products_table_escapes_pipes(sample_products):
    product = ScoredProduct.from_product(sample_products[0], 6, "Good | cheap")
    assert "Good - cheap" in format_top_products_table([product])


def test_top_products_table_empty():
    assert format_top_products_table([]) == "*No products found.*"


def test_markdown_report(completed_result):
    report = format_recommendations_markdown(completed_result)
    assert report.startswith("# Gift Ideas for Dad")
    assert "1. spice rack" in report
    assert "Session 1 (`spice rack`): 3 products" in report
    assert "Session 2 (`chef knife`): failed (SessionError: act failed)" in report
    assert "Total products found: 3" in report
    assert "Run ID: run-1" in report


def test_markdown_report_fallbacks(dad_profile):
    result = GiftRecommendations(
        profile=dad_profile,
        status=PipelineStatus.NO_PRODUCTS,
        query_batch=QueryBatch(queries=["gifts", "accessories", "items"], source=QuerySource.FALLBACK),
    )
    report = format_recommendations_markdown(result)
    assert "fallback queries were used" in report
    assert "*No products found to score.*" in report


def test_markdown_report_neutral_scores(completed_result):
    result = completed_result.model_copy(update={
        "scoring": ScoringOutcome(products=completed_result.top_products, tier=ScoringTier.UNIFORM_FALLBACK),
    })
    assert "neutral score" in format_recommendations_markdown(result)


def test_json_output(completed_result):
    data = json.loads(format_recommendations_json(completed_result))
    assert data == recommendations_to_dict(completed_result)
    assert data["status"] == "completed"
    assert data["recipient"] == {"category": "Dad", "description": "loves cooking and grilling"}
    assert data["searches"][1]["status"] == "failed"
    assert data["top_products"][0]["aiScore"] == 9
    assert data["top_products"][0]["aiReason"] == "Reason 1"
    assert data["scoring_tier"] == "model"
