"""
Concurrent search fan-out.

Launches one ``SearchSession`` per query without waiting between launches,
then joins on all of them. Sessions isolate their own failures, so the join
never rejects; results come back in query order.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from gift_finder.config.settings import Settings, get_settings
from gift_finder.models.schemas import Product, SearchResult, SessionStatus
from gift_finder.search.session import BrowserFactory, EventCallback, SearchSession
from gift_finder.utils.errors import categorize_error
from gift_finder.utils.logger import get_logger

logger = get_logger(__name__)


class SearchOrchestrator:
    """
    Runs every query in its own browser session, concurrently.

    Example:
        >>> orchestrator = SearchOrchestrator(browser_factory, settings)
        >>> results = await orchestrator.run_all(["spice rack", "chef knife"])
        >>> products = SearchOrchestrator.aggregate(results)
    """

    def __init__(
        self,
        browser_factory: BrowserFactory,
        settings: Optional[Settings] = None,
        max_concurrency: Optional[int] = None,
        settle_delay: Optional[float] = None,
        event_callback: Optional[EventCallback] = None,
        session_factory: Optional[Callable[[], SearchSession]] = None,
    ):
        """
        Args:
            browser_factory: Returns a fresh ``BrowserSession`` per call
            settings: Application settings
            max_concurrency: Optional cap on simultaneous sessions; unbounded by default
            settle_delay: Override for the post-search settle delay
            event_callback: Receives session state events
            session_factory: Override for building sessions (testing)
        """
        self.settings = settings or get_settings()
        self.browser_factory = browser_factory
        self.max_concurrency = (
            max_concurrency if max_concurrency is not None else self.settings.max_concurrent_sessions
        )
        self.settle_delay = settle_delay
        self.event_callback = event_callback
        self._session_factory = session_factory or self._new_session

    def _new_session(self) -> SearchSession:
        return SearchSession(
            self.browser_factory,
            settings=self.settings,
            settle_delay=self.settle_delay,
            event_callback=self.event_callback,
        )

    async def run_all(self, queries: Sequence[str]) -> list[SearchResult]:
        """
        Search every query concurrently and wait for all of them.

        Returns:
            One ``SearchResult`` per query, in query order
        """
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def run_one(query: str, session_index: int) -> SearchResult:
            session = self._session_factory()
            if semaphore is None:
                return await session.run(query, session_index)
            async with semaphore:
                return await session.run(query, session_index)

        logger.info(
            "Starting concurrent searches",
            sessions=len(queries),
            max_concurrency=self.max_concurrency,
        )

        outcomes = await asyncio.gather(
            *(run_one(query, index) for index, query in enumerate(queries, start=1)),
            return_exceptions=True,
        )

        results: list[SearchResult] = []
        for index, (query, outcome) in enumerate(zip(queries, outcomes), start=1):
            if isinstance(outcome, SearchResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                # Cancellation and interpreter exits are not ours to absorb
                raise outcome
            logger.error(
                "Search session escaped its failure boundary",
                session_index=index,
                query=query,
                error=str(outcome),
            )
            results.append(SearchResult(
                query=query,
                session_index=index,
                status=SessionStatus.FAILED,
                error=f"{type(outcome).__name__}: {outcome}",
                failure_category=categorize_error(outcome).value,
            ))

        succeeded = sum(1 for r in results if r.succeeded)
        logger.info(
            "All searches finished",
            succeeded=succeeded,
            failed=len(results) - succeeded,
            products=sum(len(r.products) for r in results),
        )
        return results

    @staticmethod
    def aggregate(results: Sequence[SearchResult]) -> list[Product]:
        """Concatenate products of all results, in result order."""
        return [product for result in results for product in result.products]
