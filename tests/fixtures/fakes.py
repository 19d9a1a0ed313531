"""Scripted renderer fakes for crawl engine tests."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from rendercrawl.crawler.diagnostics import ErrorLogger
from rendercrawl.crawler.fetcher import TabRenderer
from rendercrawl.crawler.job import CrawlConfig
from rendercrawl.crawler.pool import RendererPool
from rendercrawl.crawler.readiness import ReadinessConfig, ReadinessDetector
from rendercrawl.crawler.renderer import Probe, RenderedPage, Renderer, RenderSession
from rendercrawl.exceptions import InstrumentationError, ProbeError, RenderError

# Readiness timings short enough for unit tests
FAST_READINESS = ReadinessConfig(
    network_idle_wait=0.01,
    dom_stable_wait=0.01,
    content_plateau_wait=0.01,
    content_check_interval=0.005,
    min_content_length=20,
    phase_cap=1.0,
    poll_interval=0.005,
    selector_poll_interval=0.005,
)


def fast_crawl_config(**overrides: Any) -> CrawlConfig:
    """Crawl config without inter-request delays."""
    values: dict[str, Any] = {
        "max_workers": 1,
        "request_timeout": 5.0,
        "request_delay": 0.0,
        "pause_poll_interval": 0.01,
        "idle_poll_interval": 0.01,
    }
    values.update(overrides)
    return CrawlConfig(**values)


@dataclass
class FakePage:
    """Content served for one URL."""

    text: str
    links: list[str] = field(default_factory=list)
    html: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    selectors: list[str] = field(default_factory=list)

    def render_html(self) -> str:
        if self.html is not None:
            return self.html
        anchors = "".join(f'<a href="{link}">link</a>' for link in self.links)
        return f"<html><body><main>{self.text}</main>{anchors}</body></html>"


class FakeSession(RenderSession):
    """Session that serves pages from its renderer's script."""

    def __init__(self, renderer: "FakeRenderer", isolated: bool, number: int):
        self.renderer = renderer
        self.isolated = isolated
        self._session_id = f"fake-{number}"
        self.current_url: str | None = None
        self.instrumented = False
        self.detached = False
        self.closed = False
        self.dead = False
        self.fail_close = False
        self._mutations = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    def _page(self) -> FakePage:
        assert self.current_url is not None
        return self.renderer.pages[self.current_url]

    async def navigate(self, url: str, timeout: float) -> None:
        self.renderer.navigations.append(url)
        if self.renderer.navigate_delay:
            await asyncio.sleep(self.renderer.navigate_delay)
        if url in self.renderer.failures:
            raise self.renderer.failures[url]
        if url not in self.renderer.pages:
            raise RenderError(f"No page scripted for {url}", url=url)
        self.current_url = url
        self._mutations = 0

    async def run_probe(self, probe: Probe, *args: Any) -> Any:
        self.renderer.probe_calls.append(probe)
        if probe in self.renderer.failing_probes:
            raise ProbeError(probe.value, "probe failed")
        if probe == Probe.RESOURCE_COUNT:
            return 12
        if probe == Probe.MUTATION_COUNT:
            if self.renderer.endless_mutations:
                self._mutations += 1
            return self._mutations
        if probe == Probe.CONTENT_LENGTH:
            return len(self._page().text)
        if probe == Probe.SELECTORS_PRESENT:
            wanted = args[0] if args else []
            return [s for s in wanted if s in self._page().selectors]
        if probe == Probe.SPOOF_VISIBILITY:
            return True
        raise AssertionError(f"unexpected probe {probe}")

    async def extract(self) -> RenderedPage:
        page = self._page()
        assert self.current_url is not None
        return RenderedPage(
            url=self.current_url,
            html=page.render_html(),
            text=page.text,
            links=list(page.links) if self.renderer.dom_links else [],
            metadata=dict(page.metadata),
        )

    async def instrument(self) -> None:
        if self.renderer.fail_instrument:
            raise InstrumentationError("debugger attach refused", session_id=self.session_id)
        self.renderer.instrument_calls += 1
        self.instrumented = True

    async def detach(self) -> None:
        self.detached = True

    async def is_alive(self) -> bool:
        return not (self.closed or self.dead)

    async def close(self) -> None:
        if self.fail_close:
            raise RuntimeError("Target page, context or browser has been closed")
        self.closed = True


class FakeRenderer(Renderer):
    """Renderer serving a scripted site."""

    def __init__(self, pages: dict[str, FakePage] | None = None):
        self.pages: dict[str, FakePage] = dict(pages or {})
        self.failures: dict[str, Exception] = {}
        self.failing_probes: set[Probe] = set()
        self.sessions: list[FakeSession] = []
        self.navigations: list[str] = []
        self.probe_calls: list[Probe] = []
        self.instrument_calls = 0
        self.isolated_context_closes = 0
        self.navigate_delay = 0.0
        self.endless_mutations = False
        self.fail_instrument = False
        self.dom_links = True

    async def new_session(self, isolated: bool = False) -> RenderSession:
        session = FakeSession(self, isolated, len(self.sessions) + 1)
        self.sessions.append(session)
        return session

    async def close_isolated_context(self) -> None:
        self.isolated_context_closes += 1


def make_fetcher(renderer: FakeRenderer, error_logger: ErrorLogger | None = None) -> TabRenderer:
    """Full fetch pipeline over a fake renderer with fast readiness."""
    return TabRenderer(RendererPool(renderer), ReadinessDetector(FAST_READINESS), error_logger)
