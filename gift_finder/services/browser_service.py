"""
Browser session capability.

Defines the ``BrowserSession`` interface the search sessions depend on and a
Playwright implementation of it. Natural-language actions are resolved by
Claude against a snapshot of the page's interactive elements; structured
extraction hands the visible page text and its links to Claude together with
the target schema.

A session either launches a local Chromium or attaches to a remote browser
over CDP (``BROWSER_CDP_URL``). Region and CAPTCHA solving only mean something
to a remote provider and are forwarded to it as query parameters.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal, Optional, Type, TypeVar
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse
from uuid import uuid4

from playwright.async_api import async_playwright
from pydantic import BaseModel, Field, ValidationError

from gift_finder.config.settings import Settings
from gift_finder.services.llm_service import ClaudeService, TaskType, extract_json
from gift_finder.utils.errors import BrowserSessionTimeoutError, CleanupError, SessionError
from gift_finder.utils.logger import get_logger

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

AD_HOST_MARKERS = (
    "doubleclick.net",
    "googlesyndication.com",
    "googleadservices.com",
    "adservice.google.",
    "amazon-adsystem.com",
    "adnxs.com",
    "criteo.com",
    "taboola.com",
    "outbrain.com",
    "scorecardresearch.com",
)

MAX_INTERACTIVE_ELEMENTS = 150
MAX_PAGE_TEXT_CHARS = 15000
MAX_PAGE_LINKS = 150

SNAPSHOT_ELEMENTS_JS = """(maxElements) => {
    document.querySelectorAll('[data-gf-index]').forEach(el => el.removeAttribute('data-gf-index'));
    const selector = 'input, textarea, select, button, a[href], [role="button"], [role="searchbox"], [contenteditable="true"]';
    const isVisible = (el) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
    };
    const elements = [];
    for (const el of document.querySelectorAll(selector)) {
        if (elements.length >= maxElements) break;
        if (!isVisible(el)) continue;
        const index = elements.length;
        el.setAttribute('data-gf-index', String(index));
        elements.push({
            index,
            tag: el.tagName.toLowerCase(),
            type: el.getAttribute('type') || '',
            text: (el.innerText || el.value || '').trim().slice(0, 80),
            placeholder: el.getAttribute('placeholder') || '',
            label: el.getAttribute('aria-label') || el.getAttribute('title') || el.getAttribute('name') || '',
        });
    }
    return elements;
}"""

PAGE_LINKS_JS = """(maxLinks) => {
    const links = [];
    for (const a of document.querySelectorAll('a[href]')) {
        if (links.length >= maxLinks) break;
        const text = (a.innerText || a.getAttribute('aria-label') || '').trim().replace(/\\s+/g, ' ');
        if (!text || !a.href.startsWith('http')) continue;
        links.push({text: text.slice(0, 120), href: a.href});
    }
    return links;
}"""

ACTION_PROMPT_TEMPLATE = """You control a web browser. Choose the single page element and action that carries out the instruction.

<instruction>
{instruction}
</instruction>

<page url="{url}" title="{title}">
{elements}
</page>

Actions:
- "fill": type the value into an input element
- "click": click the element
- "press": press a key (the value, e.g. "Enter") while the element is focused

Return ONLY a JSON object, no markdown:
{{"element_index": <index>, "action": "fill" | "click" | "press", "value": "<text or key, or null>"}}"""


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class BrowserSessionConfig:
    """Pass-through configuration for a browser session."""
    region: str = "us-east-1"
    timeout_seconds: int = 900
    action_timeout_ms: int = 30000
    block_ads: bool = True
    solve_captchas: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    headless: bool = True
    cdp_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserSessionConfig":
        return cls(
            region=settings.browser_region,
            timeout_seconds=settings.browser_session_timeout_seconds,
            action_timeout_ms=settings.browser_action_timeout_ms,
            block_ads=settings.browser_block_ads,
            solve_captchas=settings.browser_solve_captchas,
            viewport_width=settings.browser_viewport_width,
            viewport_height=settings.browser_viewport_height,
            headless=settings.browser_headless,
            cdp_url=settings.browser_cdp_url,
        )

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    def connect_url(self) -> Optional[str]:
        """Remote CDP endpoint with the provider options appended."""
        if not self.cdp_url:
            return None
        parsed = urlparse(self.cdp_url)
        query = dict(parse_qsl(parsed.query))
        query.update({
            "region": self.region,
            "timeout": str(self.timeout_seconds),
            "solveCaptchas": str(self.solve_captchas).lower(),
            "blockAds": str(self.block_ads).lower(),
        })
        return urlunparse(parsed._replace(query=urlencode(query)))


def is_ad_request(url: str) -> bool:
    """Whether a request URL points at a known ad or tracking host."""
    host = urlparse(url).netloc.lower()
    return any(marker in host for marker in AD_HOST_MARKERS)


class PageAction(BaseModel):
    """The model's choice of element and action for an instruction."""
    element_index: int = Field(..., ge=0)
    action: Literal["fill", "click", "press"]
    value: Optional[str] = None


# =============================================================================
# Session Interface
# =============================================================================

class BrowserSession(ABC):
    """A single isolated browser instance."""

    session_id: Optional[str] = None

    @abstractmethod
    async def init(self) -> None:
        """Start the browser and open a page."""

    @abstractmethod
    async def goto_url(self, url: str) -> None:
        """Navigate the page to a URL."""

    @abstractmethod
    async def act(self, instruction: str) -> None:
        """Carry out a natural-language action on the current page."""

    @abstractmethod
    async def extract(self, instruction: str, schema: Type[T]) -> T:
        """Extract data conforming to ``schema`` from the current page."""

    @abstractmethod
    async def close(self) -> None:
        """Release every browser resource. Safe to call more than once."""


# =============================================================================
# Playwright Implementation
# =============================================================================

class PlaywrightBrowserSession(BrowserSession):
    """
    Playwright-backed browser session driven by Claude.

    Every operation runs under the session's lifetime ceiling; exceeding it
    raises ``BrowserSessionTimeoutError``.
    """

    def __init__(self, config: BrowserSessionConfig, llm_service: ClaudeService):
        self.config = config
        self.llm = llm_service
        self.session_id: Optional[str] = None

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._started_at: Optional[float] = None

    @property
    def page(self):
        if self._page is None:
            raise SessionError("Browser session is not initialized", step="page")
        return self._page

    def _remaining_seconds(self) -> float:
        if self._started_at is None:
            return float(self.config.timeout_seconds)
        return self.config.timeout_seconds - (time.monotonic() - self._started_at)

    async def _guard(self, step: str, coro) -> Any:
        """Run one operation under the remaining lifetime budget."""
        remaining = self._remaining_seconds()
        if remaining <= 0:
            coro.close()
            raise BrowserSessionTimeoutError(self.config.timeout_seconds, step=step)
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise BrowserSessionTimeoutError(self.config.timeout_seconds, step=step) from e

    async def init(self) -> None:
        self._started_at = time.monotonic()
        await self._guard("init", self._start())
        logger.debug(
            "Browser session started",
            session_id=self.session_id,
            remote=bool(self.config.cdp_url),
        )

    async def _start(self) -> None:
        self._playwright = await async_playwright().start()

        connect_url = self.config.connect_url()
        if connect_url:
            self._browser = await self._playwright.chromium.connect_over_cdp(connect_url)
        else:
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless)

        self._context = await self._browser.new_context(viewport=self.config.viewport)
        self._context.set_default_timeout(self.config.action_timeout_ms)
        if self.config.block_ads:
            await self._context.route("**/*", self._route_request)

        self._page = await self._context.new_page()
        self.session_id = uuid4().hex[:12]

    @staticmethod
    async def _route_request(route) -> None:
        if is_ad_request(route.request.url):
            await route.abort()
        else:
            await route.continue_()

    async def goto_url(self, url: str) -> None:
        await self._guard("navigate", self.page.goto(url, wait_until="domcontentloaded"))

    async def act(self, instruction: str) -> None:
        await self._guard("act", self._act(instruction))

    async def _act(self, instruction: str) -> None:
        page = self.page
        elements = await page.evaluate(SNAPSHOT_ELEMENTS_JS, MAX_INTERACTIVE_ELEMENTS)
        if not elements:
            raise SessionError("No interactive elements on page", step="act")

        prompt = ACTION_PROMPT_TEMPLATE.format(
            instruction=instruction,
            url=page.url,
            title=await page.title(),
            elements="\n".join(_describe_element(el) for el in elements),
        )
        reply = await self.llm.complete(
            prompt,
            max_tokens=200,
            temperature=self.llm.settings.browser_temperature,
            task_type=TaskType.BROWSER_ACTION,
        )
        try:
            action = PageAction.model_validate_json(extract_json(reply))
        except ValidationError as e:
            raise SessionError(f"Unusable action for '{instruction}': {reply[:200]}", step="act") from e

        if action.element_index >= len(elements):
            raise SessionError(
                f"Action targets unknown element {action.element_index}",
                step="act",
            )

        locator = page.locator(f'[data-gf-index="{action.element_index}"]').first
        logger.debug(
            "Performing page action",
            instruction=instruction,
            action=action.action,
            element=elements[action.element_index],
        )

        if action.action == "fill":
            await locator.fill(action.value or "")
        elif action.action == "press":
            await locator.press(action.value or "Enter")
        else:
            await locator.click()

    async def extract(self, instruction: str, schema: Type[T]) -> T:
        return await self._guard("extract", self._extract(instruction, schema))

    async def _extract(self, instruction: str, schema: Type[T]) -> T:
        page = self.page
        text = await page.evaluate("() => document.body ? document.body.innerText : ''")
        links = await page.evaluate(PAGE_LINKS_JS, MAX_PAGE_LINKS)

        content = (
            f"Page URL: {page.url}\n\n"
            f"## Visible text\n{text[:MAX_PAGE_TEXT_CHARS]}\n\n"
            "## Links\n" + "\n".join(f"- {link['text']} -> {link['href']}" for link in links)
        )
        return await self.llm.extract_structured_data(
            content,
            schema,
            additional_context=instruction,
        )

    async def close(self) -> None:
        errors: list[str] = []
        for name, resource, method in (
            ("context", self._context, "close"),
            ("browser", self._browser, "close"),
            ("playwright", self._playwright, "stop"),
        ):
            if resource is None:
                continue
            try:
                await getattr(resource, method)()
            except Exception as e:
                errors.append(f"{name}: {e}")

        self._page = self._context = self._browser = self._playwright = None
        if errors:
            raise CleanupError("; ".join(errors))


def _describe_element(element: dict[str, Any]) -> str:
    """One line per element for the action prompt."""
    kind = element["tag"] + (f" type={element['type']}" if element.get("type") else "")
    details = [
        f'text="{element["text"]}"' if element.get("text") else "",
        f'placeholder="{element["placeholder"]}"' if element.get("placeholder") else "",
        f'label="{element["label"]}"' if element.get("label") else "",
    ]
    return f"[{element['index']}] <{kind}> " + " ".join(d for d in details if d)


def create_browser_session_factory(settings: Settings, llm_service: ClaudeService):
    """Factory producing a fresh, unshared Playwright session per call."""
    config = BrowserSessionConfig.from_settings(settings)

    def factory() -> BrowserSession:
        return PlaywrightBrowserSession(config, llm_service)

    return factory


__all__ = [
    "BrowserSession",
    "BrowserSessionConfig",
    "PlaywrightBrowserSession",
    "PageAction",
    "create_browser_session_factory",
    "is_ad_request",
]
