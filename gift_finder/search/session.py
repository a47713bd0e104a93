"""
A single isolated search session.

Each session owns one browser session for one query and walks it through
navigate, search and extract. Whatever goes wrong stays inside: the caller
always gets a ``SearchResult``, with no products when the session failed.

State machine::

    created -> initialized -> navigated -> searched -> extracted -> closed
    (any state before closed) -> failed -> closed
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from gift_finder.config.settings import Settings, get_settings
from gift_finder.models.schemas import (
    EventKind,
    ExtractedProducts,
    PipelineEvent,
    Product,
    SearchResult,
    SessionState,
    SessionStatus,
)
from gift_finder.services.browser_service import BrowserSession
from gift_finder.utils.errors import categorize_error
from gift_finder.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

BrowserFactory = Callable[[], BrowserSession]
EventCallback = Callable[[PipelineEvent], None]

SEARCH_INSTRUCTION = "Type {query} into the search bar"
SUBMIT_INSTRUCTION = "Click the search button"
EXTRACT_INSTRUCTION = "Extract the first {count} products from the search results"

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.INITIALIZED, SessionState.FAILED}),
    SessionState.INITIALIZED: frozenset({SessionState.NAVIGATED, SessionState.FAILED}),
    SessionState.NAVIGATED: frozenset({SessionState.SEARCHED, SessionState.FAILED}),
    SessionState.SEARCHED: frozenset({SessionState.EXTRACTED, SessionState.FAILED}),
    SessionState.EXTRACTED: frozenset({SessionState.CLOSED, SessionState.FAILED}),
    SessionState.FAILED: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """A session tried to move to a state its current state does not allow."""


class SearchSession:
    """
    Runs one query against the target site in its own browser session.

    Args:
        browser_factory: Returns a fresh, unshared ``BrowserSession``
        settings: Application settings
        settle_delay: Seconds to wait after searching, before extracting
        event_callback: Receives session state events
    """

    def __init__(
        self,
        browser_factory: BrowserFactory,
        settings: Optional[Settings] = None,
        settle_delay: Optional[float] = None,
        event_callback: Optional[EventCallback] = None,
    ):
        self.settings = settings or get_settings()
        self._browser_factory = browser_factory
        self.target_url = self.settings.target_site_url
        self.max_products = self.settings.max_products_per_search
        self.settle_delay = (
            settle_delay if settle_delay is not None else self.settings.settle_delay_seconds
        )
        self._event_callback = event_callback

        self.state = SessionState.CREATED
        self.history: list[SessionState] = [SessionState.CREATED]
        self.session_id: Optional[str] = None
        self._session_index = 0

    # =========================================================================
    # State Handling
    # =========================================================================

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        self._emit(
            EventKind.SESSION_STATE,
            f"Session {self._session_index}: {new_state.value}",
            state=new_state.value,
        )

    def _emit(self, kind: EventKind, message: str, **data) -> None:
        if self._event_callback is None:
            return
        try:
            self._event_callback(PipelineEvent(
                kind=kind,
                message=message,
                session_index=self._session_index,
                data=data,
            ))
        except Exception as e:
            logger.warning("Event callback failed", error=str(e))

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, query: str, session_index: int) -> SearchResult:
        """
        Search for ``query`` and extract the first products.

        Never raises for ordinary failures; they are logged and turned into a
        failed result with no products.
        """
        if self.state != SessionState.CREATED:
            raise InvalidTransitionError("A search session can only be run once")

        self._session_index = session_index
        start_time = time.time()
        browser: Optional[BrowserSession] = None
        products: list[Product] = []
        error: Optional[BaseException] = None

        with LogContext(session_index=session_index, query=query):
            logger.info("Starting search session")
            try:
                browser = self._browser_factory()
                products = await self._search(browser, query)
            except Exception as e:
                error = e
                self._transition(SessionState.FAILED)
                logger.error(
                    "Search session failed",
                    from_state=self.history[-2].value,
                    error=str(e),
                    error_type=type(e).__name__,
                    category=categorize_error(e).value,
                )
            finally:
                if browser is not None:
                    await self._release(browser)
                self._transition(SessionState.CLOSED)

            duration_ms = int((time.time() - start_time) * 1000)

            if error is None:
                logger.info("Search session completed", products=len(products), duration_ms=duration_ms)
                return SearchResult(
                    query=query,
                    session_index=session_index,
                    products=products,
                    status=SessionStatus.SUCCEEDED,
                    session_id=self.session_id,
                    states=self.history,
                    duration_ms=duration_ms,
                )

            return SearchResult(
                query=query,
                session_index=session_index,
                products=[],
                status=SessionStatus.FAILED,
                error=f"{type(error).__name__}: {error}",
                failure_category=categorize_error(error).value,
                session_id=self.session_id,
                states=self.history,
                duration_ms=duration_ms,
            )

    # =========================================================================
    # Steps
    # =========================================================================

    async def _search(self, browser: BrowserSession, query: str) -> list[Product]:
        await browser.init()
        self.session_id = browser.session_id
        self._transition(SessionState.INITIALIZED)

        if self.session_id:
            live_view = self.settings.live_view_url(self.session_id)
            logger.info("Browser session ready", session_id=self.session_id, live_view=live_view)
            self._emit(
                EventKind.SESSION_LIVE_VIEW,
                f"Session {self._session_index} started",
                session_id=self.session_id,
                live_view_url=live_view,
            )

        logger.debug("Navigating", url=self.target_url)
        await browser.goto_url(self.target_url)
        self._transition(SessionState.NAVIGATED)

        await browser.act(SEARCH_INSTRUCTION.format(query=query))
        await browser.act(SUBMIT_INSTRUCTION)
        # Results render asynchronously; this is a fixed wait, not a readiness signal
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        self._transition(SessionState.SEARCHED)

        extracted = await browser.extract(
            EXTRACT_INSTRUCTION.format(count=self.max_products),
            ExtractedProducts,
        )
        products = list(extracted.products[: self.max_products])
        self._transition(SessionState.EXTRACTED)
        return products

    async def _release(self, browser: BrowserSession) -> None:
        """Close the browser; failures here are logged, never raised."""
        try:
            await browser.close()
        except Exception as e:
            logger.warning(
                "Error closing browser session",
                session_id=self.session_id,
                error=str(e),
            )
