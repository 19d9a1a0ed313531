"""Playwright-backed renderer.

Runs Chromium through the Playwright async API. Each session is one page
(tab) of either the default browser context or a lazily created isolated
context.
"""

import uuid
from typing import Any

import structlog
from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from rendercrawl.config import Settings
from rendercrawl.crawler.renderer import Probe, RenderedPage, Renderer, RenderSession
from rendercrawl.exceptions import (
    ExtractionError,
    InstrumentationError,
    ProbeError,
    RenderError,
    RenderTimeoutError,
)

logger = structlog.get_logger(__name__)

MAIN_CONTENT_SELECTOR = 'main, article, [role="main"], .content, #content'

# Installed in every document before page scripts run
MUTATION_COUNTER_SCRIPT = """
(() => {
  window.__rendercrawlMutations = 0;
  const observer = new MutationObserver((mutations) => {
    window.__rendercrawlMutations += mutations.length;
  });
  observer.observe(document, {
    childList: true,
    subtree: true,
    attributes: true,
    characterData: true,
  });
})();
"""

PROBE_SCRIPTS: dict[Probe, str] = {
    Probe.RESOURCE_COUNT: "() => performance.getEntriesByType('resource').length",
    Probe.MUTATION_COUNT: "() => window.__rendercrawlMutations || 0",
    Probe.CONTENT_LENGTH: """
(selector) => {
  const target = document.querySelector(selector) || document.body;
  return target ? (target.innerText || '').length : 0;
}
""",
    Probe.SELECTORS_PRESENT: """
(selectors) => selectors.filter((selector) => {
  try {
    return document.querySelector(selector) !== null;
  } catch (e) {
    return false;
  }
})
""",
    Probe.SPOOF_VISIBILITY: """
() => {
  Object.defineProperty(document, 'visibilityState', {configurable: true, get: () => 'visible'});
  Object.defineProperty(document, 'hidden', {configurable: true, get: () => false});
  document.dispatchEvent(new Event('visibilitychange'));
  window.dispatchEvent(new Event('visibilitychange'));
  window.dispatchEvent(new FocusEvent('focus'));
  document.dispatchEvent(new FocusEvent('focus'));
  return true;
}
""",
}

EXTRACT_SCRIPT = """
() => {
  const getContent = (selector, attr = 'content') => {
    const el = document.querySelector(selector);
    return el ? el[attr] || null : null;
  };

  const metadata = {
    title: document.title || null,
    description: getContent('meta[name="description"]'),
    keywords: getContent('meta[name="keywords"]'),
    author: getContent('meta[name="author"]'),
    generator: getContent('meta[name="generator"]'),
    ogTitle: getContent('meta[property="og:title"]'),
    ogDescription: getContent('meta[property="og:description"]'),
    ogType: getContent('meta[property="og:type"]'),
    ogSiteName: getContent('meta[property="og:site_name"]'),
    articleSection: getContent('meta[property="article:section"]'),
    canonical: getContent('link[rel="canonical"]', 'href'),
  };

  const tags = Array.from(document.querySelectorAll('meta[property="article:tag"]'))
    .map((tag) => tag.content)
    .filter(Boolean);
  if (tags.length) metadata.articleTags = tags;

  for (const script of document.querySelectorAll('script[type="application/ld+json"]')) {
    try {
      const data = JSON.parse(script.textContent);
      if (data && (data.headline || data.description || data.name)) {
        metadata.jsonLd = {
          type: data['@type'] || null,
          headline: data.headline || null,
          description: data.description || null,
          name: data.name || null,
          author: (data.author && data.author.name) || null,
        };
        break;
      }
    } catch (e) {}
  }

  for (const key of Object.keys(metadata)) {
    if (metadata[key] === null || metadata[key] === undefined) delete metadata[key];
  }

  const links = [];
  for (const el of document.querySelectorAll('a[href], area[href]')) {
    if (el.href) links.push(el.href);
  }

  return {
    text: document.body ? document.body.innerText || '' : '',
    links,
    metadata,
  };
}
"""


class PlaywrightSession(RenderSession):
    """One Playwright page used as a pooled rendering session."""

    def __init__(self, page: Page, context: BrowserContext):
        self._page = page
        self._context = context
        self._cdp: CDPSession | None = None
        self._session_id = uuid.uuid4().hex[:8]

    @property
    def session_id(self) -> str:
        return self._session_id

    async def navigate(self, url: str, timeout: float) -> None:
        try:
            await self._page.goto(url, timeout=timeout * 1000, wait_until="load")
        except PlaywrightTimeout as e:
            raise RenderTimeoutError(f"Page load did not complete for {url}", url=url) from e
        except PlaywrightError as e:
            raise RenderError(f"Navigation to {url} failed: {e.message}", url=url) from e

    async def run_probe(self, probe: Probe, *args: Any) -> Any:
        script = PROBE_SCRIPTS[probe]
        if probe == Probe.CONTENT_LENGTH:
            arg: Any = MAIN_CONTENT_SELECTOR
        elif probe == Probe.SELECTORS_PRESENT:
            arg = list(args[0]) if args else []
        else:
            arg = None

        try:
            if arg is None:
                return await self._page.evaluate(script)
            return await self._page.evaluate(script, arg)
        except PlaywrightError as e:
            raise ProbeError(probe.value, e.message) from e

    async def extract(self) -> RenderedPage:
        url = self._page.url
        try:
            data = await self._page.evaluate(EXTRACT_SCRIPT)
            html = await self._page.content()
        except PlaywrightError as e:
            raise ExtractionError(f"Could not extract {url}: {e.message}", url=url) from e

        return RenderedPage(
            url=url,
            html=html,
            text=data.get("text") or "",
            links=list(data.get("links") or []),
            metadata=dict(data.get("metadata") or {}),
        )

    async def instrument(self) -> None:
        # Background tabs get timers throttled and rendering paused; a
        # debugger session with focus emulation and an active lifecycle
        # state keeps them running at full speed.
        try:
            self._cdp = await self._context.new_cdp_session(self._page)
            await self._cdp.send("Emulation.setFocusEmulationEnabled", {"enabled": True})
            await self._cdp.send("Page.setWebLifecycleState", {"state": "active"})
        except PlaywrightError as e:
            raise InstrumentationError(
                f"Could not instrument session: {e.message}", session_id=self._session_id
            ) from e

    async def detach(self) -> None:
        if self._cdp is None:
            return
        try:
            await self._cdp.detach()
        except PlaywrightError as e:
            logger.debug("session_detach_failed", session_id=self._session_id, error=e.message)
        self._cdp = None

    async def is_alive(self) -> bool:
        return not self._page.is_closed()

    async def close(self) -> None:
        try:
            await self._page.close()
        except PlaywrightError as e:
            logger.debug("session_close_failed", session_id=self._session_id, error=e.message)


class PlaywrightRenderer(Renderer):
    """Chromium renderer with a default and an isolated browsing context."""

    def __init__(
        self,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        user_agent: str | None = None,
    ):
        self.headless = headless
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.user_agent = user_agent
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._isolated_context: BrowserContext | None = None

    @classmethod
    def from_settings(cls, settings: Settings, headless: bool | None = None) -> "PlaywrightRenderer":
        return cls(
            headless=settings.headless if headless is None else headless,
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
            user_agent=settings.user_agent,
        )

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Launch the browser and its default context."""
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._new_context()
        logger.info("browser_started", headless=self.headless)

    async def stop(self) -> None:
        """Close every context and the browser."""
        await self.close_isolated_context()
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("browser_stopped")

    async def _new_context(self) -> BrowserContext:
        assert self._browser is not None
        kwargs: dict[str, Any] = {"viewport": self.viewport}
        if self.user_agent:
            kwargs["user_agent"] = self.user_agent
        context = await self._browser.new_context(**kwargs)
        await context.add_init_script(script=MUTATION_COUNTER_SCRIPT)
        return context

    async def new_session(self, isolated: bool = False) -> RenderSession:
        await self.start()
        if isolated:
            if self._isolated_context is None:
                self._isolated_context = await self._new_context()
                logger.info("isolated_context_created")
            context = self._isolated_context
        else:
            assert self._context is not None
            context = self._context

        try:
            page = await context.new_page()
        except PlaywrightError as e:
            raise RenderError(f"Could not open a new tab: {e.message}") from e
        return PlaywrightSession(page, context)

    async def close_isolated_context(self) -> None:
        if self._isolated_context is None:
            return
        try:
            await self._isolated_context.close()
        except PlaywrightError as e:
            logger.debug("isolated_context_close_failed", error=e.message)
        self._isolated_context = None
        logger.info("isolated_context_closed")
