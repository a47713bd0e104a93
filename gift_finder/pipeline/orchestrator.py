"""
Pipeline orchestrator using LangGraph.

Sequences query generation, concurrent search, scoring and top-K selection.
Recovery happens inside the components; the only branch here is the
zero-products route, which skips the scorer.

Graph:
    generate_queries -> run_searches -> score_products -> select_top -> END
                                    \\-> handle_no_products -> END
"""

import time
from functools import wraps
from typing import Any, Callable, Literal, Optional, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph

from gift_finder.config.settings import Settings, get_settings
from gift_finder.models.schemas import (
    EventKind,
    GiftRecommendations,
    PipelineEvent,
    PipelineStatus,
    Product,
    QueryBatch,
    QuerySource,
    RecipientProfile,
    ScoringOutcome,
    SearchResult,
)
from gift_finder.queries.query_generator import FALLBACK_QUERIES, QueryGenerator
from gift_finder.scoring.product_scorer import ProductScorer
from gift_finder.search.orchestrator import SearchOrchestrator
from gift_finder.search.session import BrowserFactory
from gift_finder.services.browser_service import create_browser_session_factory
from gift_finder.services.llm_service import ClaudeService
from gift_finder.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

STEP_WEIGHTS = {
    "generate_queries": 10,
    "run_searches": 60,
    "score_products": 25,
    "handle_no_products": 30,
    "select_top": 5,
}


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class PipelineStateDict(TypedDict, total=False):
    """LangGraph state; every node returns a partial update."""
    run_id: str
    profile: RecipientProfile
    query_batch: QueryBatch
    search_results: list[SearchResult]
    products: list[Product]
    scoring: ScoringOutcome
    status: str
    top_products: list
    step_timings: dict
    progress_percent: int


# =============================================================================
# Error Classes
# =============================================================================

class PipelineError(Exception):
    """Raised when a run fails outside the components' own recovery."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def track_timing(func: Callable):
    """Decorator to track node execution timing and progress."""
    @wraps(func)
    async def wrapper(self, state: PipelineStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.info(f"Starting node: {node_name}", run_id=state.get("run_id"))

        try:
            result = await func(self, state)
        except Exception as e:
            logger.error(
                f"Node failed: {node_name}",
                run_id=state.get("run_id"),
                duration_ms=int((time.time() - start_time) * 1000),
                error=str(e),
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        step_timings = dict(state.get("step_timings", {}))
        step_timings[node_name] = duration_ms
        result["step_timings"] = step_timings
        result["progress_percent"] = min(
            100, state.get("progress_percent", 0) + STEP_WEIGHTS.get(node_name, 0)
        )

        logger.info(
            f"Completed node: {node_name}",
            run_id=state.get("run_id"),
            duration_ms=duration_ms,
        )
        return result

    return wrapper


# =============================================================================
# Main Pipeline Class
# =============================================================================

class GiftFinderPipeline:
    """
    LangGraph-based gift finding pipeline.

    Owns the Claude client it creates and hands it to the query generator,
    the scorer and the browser sessions.

    Example:
        >>> async with GiftFinderPipeline() as pipeline:
        ...     result = await pipeline.run(RecipientProfile(category="Dad", description="loves grilling"))
        ...     print([p.title for p in result.top_products])
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_service: Optional[ClaudeService] = None,
        query_generator: Optional[QueryGenerator] = None,
        search_orchestrator: Optional[SearchOrchestrator] = None,
        scorer: Optional[ProductScorer] = None,
        browser_factory: Optional[BrowserFactory] = None,
        event_callback: Optional[Callable[[PipelineEvent], None]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings (uses defaults if not provided)
            llm_service: Shared Claude client (created if not provided)
            query_generator: Pre-configured QueryGenerator
            search_orchestrator: Pre-configured SearchOrchestrator
            scorer: Pre-configured ProductScorer
            browser_factory: Browser session factory for the default orchestrator
            event_callback: Receives status events for rendering
        """
        self.settings = settings or get_settings()
        self.event_callback = event_callback

        self._llm_service = llm_service
        self._owns_llm_service = llm_service is None
        self._query_generator = query_generator
        self._search_orchestrator = search_orchestrator
        self._scorer = scorer
        self._browser_factory = browser_factory

        self._graph = self._build_graph()

    async def __aenter__(self):
        """Async context manager entry."""
        self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _initialize_services(self) -> None:
        """Create whichever collaborators were not injected."""
        needs_llm = (
            self._query_generator is None
            or self._scorer is None
            or (self._search_orchestrator is None and self._browser_factory is None)
        )
        if needs_llm and self._llm_service is None:
            self._llm_service = ClaudeService(self.settings)

        if self._query_generator is None:
            self._query_generator = QueryGenerator(self._llm_service, self.settings)

        if self._search_orchestrator is None:
            browser_factory = self._browser_factory or create_browser_session_factory(
                self.settings, self._llm_service
            )
            self._search_orchestrator = SearchOrchestrator(
                browser_factory,
                settings=self.settings,
                event_callback=self._emit_event,
            )

        if self._scorer is None:
            self._scorer = ProductScorer(self._llm_service, self.settings)

    @property
    def query_generator(self) -> QueryGenerator:
        if self._query_generator is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._query_generator

    @property
    def search_orchestrator(self) -> SearchOrchestrator:
        if self._search_orchestrator is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._search_orchestrator

    @property
    def scorer(self) -> ProductScorer:
        if self._scorer is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._scorer

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        graph = StateGraph(PipelineStateDict)

        graph.add_node("generate_queries", self._generate_queries_node)
        graph.add_node("run_searches", self._run_searches_node)
        graph.add_node("score_products", self._score_products_node)
        graph.add_node("handle_no_products", self._handle_no_products_node)
        graph.add_node("select_top", self._select_top_node)

        graph.set_entry_point("generate_queries")
        graph.add_edge("generate_queries", "run_searches")
        graph.add_conditional_edges(
            "run_searches",
            self._route_after_search,
            {
                "score": "score_products",
                "no_products": "handle_no_products",
            },
        )
        graph.add_edge("score_products", "select_top")
        graph.add_edge("select_top", END)
        graph.add_edge("handle_no_products", END)

        return graph.compile()

    def _route_after_search(self, state: PipelineStateDict) -> Literal["score", "no_products"]:
        return "score" if state.get("products") else "no_products"

    def _emit_event(self, event: PipelineEvent) -> None:
        if self.event_callback is None:
            return
        try:
            self.event_callback(event)
        except Exception as e:
            logger.warning("Event callback failed", error=str(e))

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _generate_queries_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Generate search terms, substituting the fixed fallback on failure."""
        profile = state["profile"]
        try:
            queries = await self.query_generator.generate(profile)
            batch = QueryBatch(queries=queries, source=QuerySource.GENERATED)
        except Exception as e:
            logger.warning("Using fallback search queries", error=str(e))
            batch = QueryBatch(
                queries=FALLBACK_QUERIES,
                source=QuerySource.FALLBACK,
                error=str(e),
            )

        self._emit_event(PipelineEvent(
            kind=EventKind.QUERIES_READY,
            message="Using fallback search queries" if batch.source == QuerySource.FALLBACK
            else "Generated search queries",
            data={"queries": list(batch.queries), "source": batch.source.value},
        ))
        return {"query_batch": batch}

    @track_timing
    async def _run_searches_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Fan out one session per query and flatten their products."""
        queries = list(state["query_batch"].queries)
        results = await self.search_orchestrator.run_all(queries)
        products = SearchOrchestrator.aggregate(results)

        self._emit_event(PipelineEvent(
            kind=EventKind.SEARCHES_COMPLETE,
            message=f"Total products found: {len(products)} across {len(queries)} searches",
            data={
                "total_products": len(products),
                "failed_sessions": [r.session_index for r in results if not r.succeeded],
            },
        ))
        return {"search_results": results, "products": products}

    @track_timing
    async def _score_products_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Score every aggregated product in one batch."""
        products = state["products"]
        self._emit_event(PipelineEvent(
            kind=EventKind.SCORING_STARTED,
            message=f"Scoring {len(products)} products",
        ))

        outcome = await self.scorer.score_products(products, state["profile"])

        self._emit_event(PipelineEvent(
            kind=EventKind.SCORING_COMPLETE,
            message=f"Scored {len(outcome.products)} products",
            data={"tier": outcome.tier.value, "missing_indices": list(outcome.missing_indices)},
        ))
        return {"scoring": outcome}

    @track_timing
    async def _handle_no_products_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Terminal outcome when no session returned products."""
        self._emit_event(PipelineEvent(
            kind=EventKind.NO_PRODUCTS,
            message="No products found to score",
        ))
        return {
            "status": PipelineStatus.NO_PRODUCTS.value,
            "scoring": ScoringOutcome(),
            "top_products": [],
        }

    @track_timing
    async def _select_top_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Keep the best ``top_k`` scored products."""
        top = list(state["scoring"].products[: self.settings.top_k])
        return {
            "status": PipelineStatus.COMPLETED.value,
            "top_products": top,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(
        self,
        profile: RecipientProfile,
        run_id: Optional[str] = None,
    ) -> GiftRecommendations:
        """
        Execute the complete pipeline for a recipient.

        Args:
            profile: Recipient category and description
            run_id: Optional run ID for tracking

        Returns:
            GiftRecommendations; ``status`` tells a completed run from one
            that found no products

        Raises:
            PipelineError: If a failure escapes the components' recovery
        """
        self._initialize_services()

        run_id = run_id or str(uuid4())
        start_time = time.time()
        initial_state: PipelineStateDict = {
            "run_id": run_id,
            "profile": profile,
            "step_timings": {},
            "progress_percent": 0,
        }

        logger.info(
            "Starting pipeline run",
            run_id=run_id,
            recipient=profile.category.value,
        )

        try:
            final_state = await self._graph.ainvoke(initial_state)
        except Exception as e:
            logger.error("Pipeline failed with unexpected error", run_id=run_id, error=str(e))
            raise PipelineError(
                message=f"Unexpected pipeline error: {e}",
                details={"run_id": run_id},
            ) from e

        result = GiftRecommendations(
            run_id=run_id,
            profile=profile,
            status=PipelineStatus(final_state["status"]),
            query_batch=final_state["query_batch"],
            search_results=final_state.get("search_results", []),
            scoring=final_state.get("scoring") or ScoringOutcome(),
            top_products=final_state.get("top_products", []),
            total_products=len(final_state.get("products", [])),
            duration_ms=int((time.time() - start_time) * 1000),
        )

        self._emit_event(PipelineEvent(
            kind=EventKind.COMPLETE,
            message=f"Gift finding complete: {result.status.value}",
            progress_percent=100,
            data={"run_id": run_id},
        ))
        logger.info(
            "Pipeline completed",
            run_id=run_id,
            status=result.status.value,
            total_products=result.total_products,
            duration_ms=result.duration_ms,
            step_timings=final_state.get("step_timings", {}),
        )
        return result

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close the Claude client if this pipeline created it."""
        if self._llm_service is not None and self._owns_llm_service:
            try:
                await self._llm_service.close()
            except Exception as e:
                logger.warning(f"Error closing services: {e}")


# =============================================================================
# Convenience Functions
# =============================================================================

async def find_gifts(
    profile: RecipientProfile,
    settings: Optional[Settings] = None,
    event_callback: Optional[Callable[[PipelineEvent], None]] = None,
) -> GiftRecommendations:
    """
    Convenience function to run the pipeline once.

    Example:
        >>> result = await find_gifts(RecipientProfile(category="Mum", description="avid gardener"))
    """
    async with GiftFinderPipeline(settings=settings, event_callback=event_callback) as pipeline:
        return await pipeline.run(profile)
