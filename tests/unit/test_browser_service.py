import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from gift_finder.models.schemas import ExtractedProducts
from gift_finder.services.browser_service import (
    BrowserSessionConfig,
    PlaywrightBrowserSession,
    _describe_element,
    create_browser_session_factory,
    is_ad_request,
)
from gift_finder.services.llm_service import TaskType
from gift_finder.utils.errors import BrowserSessionTimeoutError, CleanupError, SessionError

ELEMENTS = [
    {"index": 0, "tag": "a", "type": "", "text": "Home", "placeholder": "", "label": ""},
    {"index": 1, "tag": "input", "type": "search", "text": "", "placeholder": "Search products", "label": "q"},
    {"index": 2, "tag": "button", "type": "submit", "text": "", "placeholder": "", "label": "Search"},
]


def make_page(elements=ELEMENTS):
    page = MagicMock()
    page.url = "https://firebox.eu/"
    page.title = AsyncMock(return_value="Firebox")
    page.evaluate = AsyncMock(return_value=elements)
    page.goto = AsyncMock()
    locator = MagicMock()
    locator.fill = AsyncMock()
    locator.click = AsyncMock()
    locator.press = AsyncMock()
    page.locator.return_value.first = locator
    return page, locator


def started_session(mock_llm, page, **config):
    session = PlaywrightBrowserSession(BrowserSessionConfig(**config), mock_llm)
    session._page = page
    return session


# =============================================================================
# Configuration
# =============================================================================

def test_config_from_settings(test_settings):
    config = BrowserSessionConfig.from_settings(test_settings)
    assert config.region == "us-east-1"
    assert config.timeout_seconds == 900
    assert config.block_ads and config.solve_captchas
    assert config.viewport == {"width": 1920, "height": 1080}
    assert config.connect_url() is None


def test_connect_url_forwards_provider_options():
    config = BrowserSessionConfig(
        cdp_url="wss://browser.example.com/connect?apiKey=abc",
        region="eu-central-1",
        solve_captchas=False,
    )
    parsed = urlparse(config.connect_url())
    params = parse_qs(parsed.query)
    assert parsed.netloc == "browser.example.com"
    assert params["apiKey"] == ["abc"]
    assert params["region"] == ["eu-central-1"]
    assert params["timeout"] == ["900"]
    assert params["solveCaptchas"] == ["false"]
    assert params["blockAds"] == ["true"]


@pytest.mark.parametrize("url,blocked", [
    ("https://securepubads.g.doubleclick.net/tag/js/gpt.js", True),
    ("https://pagead2.googlesyndication.com/pagead/show_ads.js", True),
    ("https://firebox.eu/cdn/shop/files/grill.jpg", False),
    ("https://www.google.com/search?q=adservice", False),
])
def test_is_ad_request(url, blocked):
    assert is_ad_request(url) is blocked


def test_describe_element():
    assert _describe_element(ELEMENTS[1]) == '[1] <input type=search> placeholder="Search products" label="q"'
    assert _describe_element(ELEMENTS[0]) == '[0] <a> text="Home"'


def test_factory_returns_fresh_sessions(test_settings, mock_llm):
    factory = create_browser_session_factory(test_settings, mock_llm)
    first, second = factory(), factory()
    assert isinstance(first, PlaywrightBrowserSession)
    assert first is not second
    assert first.config == second.config


# =============================================================================
# Actions
# =============================================================================

@pytest.mark.asyncio
async def test_act_fills_chosen_element(mock_llm):
    page, locator = make_page()
    mock_llm.complete.return_value = '{"element_index": 1, "action": "fill", "value": "spice rack"}'
    session = started_session(mock_llm, page)

    await session.act("Type spice rack into the search bar")

    page.locator.assert_called_once_with('[data-gf-index="1"]')
    locator.fill.assert_awaited_once_with("spice rack")
    prompt = mock_llm.complete.call_args.args[0]
    assert "Type spice rack into the search bar" in prompt
    assert 'placeholder="Search products"' in prompt
    assert mock_llm.complete.call_args.kwargs["task_type"] == TaskType.BROWSER_ACTION


@pytest.mark.asyncio
async def test_act_clicks(mock_llm):
    page, locator = make_page()
    mock_llm.complete.return_value = '```json\n{"element_index": 2, "action": "click", "value": null}\n```'

    await started_session(mock_llm, page).act("Click the search button")

    locator.click.assert_awaited_once()


@pytest.mark.asyncio
async def test_act_press_defaults_to_enter(mock_llm):
    page, locator = make_page()
    mock_llm.complete.return_value = '{"element_index": 1, "action": "press"}'

    await started_session(mock_llm, page).act("Submit the search")

    locator.press.assert_awaited_once_with("Enter")


@pytest.mark.asyncio
async def test_act_rejects_unknown_element(mock_llm):
    page, _ = make_page()
    mock_llm.complete.return_value = '{"element_index": 42, "action": "click"}'

    with pytest.raises(SessionError) as exc_info:
        await started_session(mock_llm, page).act("Click the search button")
    assert exc_info.value.step == "act"


@pytest.mark.asyncio
async def test_act_rejects_unusable_reply(mock_llm):
    page, _ = make_page()
    mock_llm.complete.return_value = "I would click the search icon."

    with pytest.raises(SessionError):
        await started_session(mock_llm, page).act("Click the search button")


@pytest.mark.asyncio
async def test_act_without_elements(mock_llm):
    page, _ = make_page(elements=[])

    with pytest.raises(SessionError):
        await started_session(mock_llm, page).act("Click the search button")
    mock_llm.complete.assert_not_called()


@pytest.mark.asyncio
async def test_act_before_init(mock_llm):
    session = PlaywrightBrowserSession(BrowserSessionConfig(), mock_llm)
    with pytest.raises(SessionError):
        await session.act("Click the search button")


# =============================================================================
# Extraction
# =============================================================================

@pytest.mark.asyncio
async def test_extract_passes_text_and_links(mock_llm):
    page, _ = make_page()
    page.evaluate = AsyncMock(side_effect=[
        "Grill Set €39.99 4.7 stars",
        [{"text": "Grill Set", "href": "https://firebox.eu/products/grill-set"}],
    ])
    mock_llm.extract_structured_data.return_value = ExtractedProducts()

    result = await started_session(mock_llm, page).extract(
        "Extract the first 3 products from the search results", ExtractedProducts,
    )

    assert result == ExtractedProducts()
    content, schema = mock_llm.extract_structured_data.call_args.args
    assert schema is ExtractedProducts
    assert "Grill Set €39.99" in content
    assert "- Grill Set -> https://firebox.eu/products/grill-set" in content
    assert mock_llm.extract_structured_data.call_args.kwargs["additional_context"].startswith("Extract the first 3")


# =============================================================================
# Lifetime and cleanup
# =============================================================================

@pytest.mark.asyncio
async def test_operation_past_ceiling_times_out(mock_llm):
    page, _ = make_page()
    async def slow_goto(*args, **kwargs):
        await asyncio.sleep(1)

    page.goto = AsyncMock(side_effect=slow_goto)
    session = started_session(mock_llm, page, timeout_seconds=0.05)
    session._started_at = time.monotonic()

    with pytest.raises(BrowserSessionTimeoutError) as exc_info:
        await session.goto_url("https://firebox.eu/")
    assert exc_info.value.step == "navigate"


@pytest.mark.asyncio
async def test_expired_session_fails_fast(mock_llm):
    page, _ = make_page()
    session = started_session(mock_llm, page, timeout_seconds=10)
    session._started_at = time.monotonic() - 11

    with pytest.raises(BrowserSessionTimeoutError):
        await session.goto_url("https://firebox.eu/")
    page.goto.assert_not_awaited()


@pytest.mark.asyncio
async def test_init_launches_local_browser(mock_llm):
    playwright = MagicMock()
    context = MagicMock()
    context.route = AsyncMock()
    context.new_page = AsyncMock(return_value=MagicMock())
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    playwright.chromium.launch = AsyncMock(return_value=browser)
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)

    with patch("gift_finder.services.browser_service.async_playwright", return_value=starter):
        session = PlaywrightBrowserSession(BrowserSessionConfig(), mock_llm)
        await session.init()

    playwright.chromium.launch.assert_awaited_once_with(headless=True)
    browser.new_context.assert_awaited_once_with(viewport={"width": 1920, "height": 1080})
    context.set_default_timeout.assert_called_once_with(30000)
    context.route.assert_awaited_once()
    assert session.session_id and len(session.session_id) == 12


@pytest.mark.asyncio
async def test_close_is_idempotent_and_aggregates_errors(mock_llm):
    session = PlaywrightBrowserSession(BrowserSessionConfig(), mock_llm)
    session._context = MagicMock(close=AsyncMock(side_effect=RuntimeError("context gone")))
    browser = MagicMock(close=AsyncMock())
    session._browser = browser
    session._playwright = MagicMock(stop=AsyncMock(side_effect=RuntimeError("driver gone")))

    with pytest.raises(CleanupError) as exc_info:
        await session.close()

    assert "context: context gone" in str(exc_info.value)
    assert "playwright: driver gone" in str(exc_info.value)
    browser.close.assert_awaited_once()

    # Second close has nothing left to release
    await session.close()
