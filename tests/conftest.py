import asyncio
import json
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from gift_finder.config.settings import Settings
from gift_finder.models.schemas import (
    Product,
    RecipientCategory,
    RecipientProfile,
)
from gift_finder.services.browser_service import BrowserSession
from gift_finder.utils.errors import SessionError


class FakeBrowserSession(BrowserSession):
    """In-memory browser session recording every call made on it."""

    def __init__(
        self,
        products: Optional[list] = None,
        fail_on: Optional[str] = None,
        close_error: Optional[Exception] = None,
        session_id: str = "sess-test",
        delay: float = 0,
        tracker: Optional[dict] = None,
    ):
        self.products = products or []
        self.fail_on = fail_on
        self.close_error = close_error
        self._session_id = session_id
        self.delay = delay
        self.tracker = tracker

        self.session_id = None
        self.calls: list[tuple] = []
        self.close_count = 0

    def _maybe_fail(self, step: str) -> None:
        if self.fail_on == step:
            raise SessionError(f"{step} failed", step=step)

    async def init(self) -> None:
        self.calls.append(("init",))
        self._maybe_fail("init")
        self.session_id = self._session_id

    async def goto_url(self, url: str) -> None:
        self.calls.append(("goto_url", url))
        self._maybe_fail("navigate")

    async def act(self, instruction: str) -> None:
        self.calls.append(("act", instruction))
        self._maybe_fail("act")

    async def extract(self, instruction, schema):
        self.calls.append(("extract", instruction))
        if self.tracker is not None:
            self.tracker["active"] += 1
            self.tracker["peak"] = max(self.tracker["peak"], self.tracker["active"])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self._maybe_fail("extract")
            return schema(products=self.products)
        finally:
            if self.tracker is not None:
                self.tracker["active"] -= 1

    async def close(self) -> None:
        self.calls.append(("close",))
        self.close_count += 1
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def test_settings():
    """Real settings isolated from the environment and any .env file."""
    return Settings(
        ANTHROPIC_API_KEY="sk-ant-test-key",
        SETTLE_DELAY_SECONDS=0,
        MAX_RETRIES=3,
        RETRY_BACKOFF_SECONDS=0,
        _env_file=None,
    )


@pytest.fixture
def mock_llm(test_settings):
    """ClaudeService stand-in with async completion methods."""
    llm = MagicMock()
    llm.settings = test_settings
    llm.complete = AsyncMock()
    llm.extract_structured_data = AsyncMock()
    llm.close = AsyncMock()
    return llm


@pytest.fixture
def dad_profile():
    return RecipientProfile(
        category=RecipientCategory.DAD,
        description="loves cooking and grilling",
    )


def make_product(n: int) -> Product:
    return Product(
        title=f"Product {n}",
        url=f"https://firebox.eu/products/item-{n}",
        price=f"€{10 * n}.99",
        rating=f"{n % 5 + 1} stars",
    )


@pytest.fixture
def sample_products():
    return [make_product(n) for n in range(1, 4)]


@pytest.fixture
def six_products():
    return [make_product(n) for n in range(1, 7)]


@pytest.fixture
def fake_browser_cls():
    return FakeBrowserSession


@pytest.fixture
def scoring_reply():
    """Build a JSON scoring reply from ``(index, score)`` pairs."""
    def build(pairs):
        return json.dumps([
            {"productIndex": index, "score": score, "reason": f"Reason {index}"}
            for index, score in pairs
        ])
    return build
