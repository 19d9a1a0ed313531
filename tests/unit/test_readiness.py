"""Tests for the content readiness detector."""

import asyncio

import pytest

from rendercrawl.crawler.readiness import ReadinessConfig, ReadinessDetector, ReadinessState
from rendercrawl.crawler.renderer import Probe
from tests.fixtures.fakes import FAST_READINESS, FakePage, FakeRenderer, FakeSession


async def _session_on(renderer: FakeRenderer, url: str) -> FakeSession:
    session = await renderer.new_session()
    await session.navigate(url, timeout=1.0)
    assert isinstance(session, FakeSession)
    return session


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer({"https://x.com/": FakePage(text="Rendered documentation body " * 5, selectors=["main"])})


class TestWaitUntilReady:
    """Tests for ReadinessDetector.wait_until_ready."""

    @pytest.mark.asyncio
    async def test_all_signals_settle(self, renderer: FakeRenderer) -> None:
        """Test a quiet page reaches every signal."""
        session = await _session_on(renderer, "https://x.com/")
        result = await ReadinessDetector(FAST_READINESS).wait_until_ready(session, timeout=2.0)

        assert result.state == ReadinessState.READY
        assert result.fully_ready is True
        assert result.network.reason == "stable"
        assert result.dom.reason == "stable"
        assert result.content.reached is True
        assert result.content_length == len(renderer.pages["https://x.com/"].text)
        assert result.states == [
            ReadinessState.LOADING,
            ReadinessState.SETTLING,
            ReadinessState.CONTENT_PLATEAU,
            ReadinessState.READY,
        ]

    @pytest.mark.asyncio
    async def test_endless_mutations_do_not_hang(self, renderer: FakeRenderer) -> None:
        """Test a page that never stops mutating still returns by the deadline."""
        renderer.endless_mutations = True
        session = await _session_on(renderer, "https://x.com/")
        detector = ReadinessDetector(FAST_READINESS)

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await detector.wait_until_ready(session, timeout=0.3)
        elapsed = loop.time() - started

        assert result.state == ReadinessState.READY
        assert result.dom.reached is False
        assert result.dom.reason == "timeout"
        assert result.fully_ready is False
        assert elapsed < 0.3 + 0.2

    @pytest.mark.asyncio
    async def test_probe_failure_degrades(self, renderer: FakeRenderer) -> None:
        """Test failing probes are absorbed."""
        renderer.failing_probes = {Probe.RESOURCE_COUNT, Probe.CONTENT_LENGTH}
        session = await _session_on(renderer, "https://x.com/")

        result = await ReadinessDetector(FAST_READINESS).wait_until_ready(session, timeout=1.0)

        assert result.network.reason == "error"
        assert result.dom.reached is True
        assert result.content.reason == "error"

    @pytest.mark.asyncio
    async def test_zero_budget_skips_plateau(self, renderer: FakeRenderer) -> None:
        """Test no plateau sampling when the deadline is already spent."""
        session = await _session_on(renderer, "https://x.com/")

        result = await ReadinessDetector(FAST_READINESS).wait_until_ready(session, timeout=0.0)

        assert result.content.reason == "no_budget"
        assert Probe.CONTENT_LENGTH not in renderer.probe_calls

    @pytest.mark.asyncio
    async def test_short_content_plateaus_on_stability(self) -> None:
        """Test content below the minimum still plateaus once it stops changing."""
        renderer = FakeRenderer({"https://x.com/": FakePage(text="tiny")})
        session = await _session_on(renderer, "https://x.com/")
        config = ReadinessConfig(
            network_idle_wait=0.01,
            dom_stable_wait=0.01,
            content_plateau_wait=0.02,
            content_check_interval=0.005,
            min_content_length=200,
            poll_interval=0.005,
        )

        result = await ReadinessDetector(config).wait_until_ready(session, timeout=1.0)

        assert result.content.reached is True
        assert result.content.reason == "plateau"
        assert result.content_length == 4


class TestWaitForSelectors:
    """Tests for ReadinessDetector.wait_for_selectors."""

    @pytest.mark.asyncio
    async def test_found(self, renderer: FakeRenderer) -> None:
        """Test present selectors return immediately."""
        session = await _session_on(renderer, "https://x.com/")
        found = await ReadinessDetector(FAST_READINESS).wait_for_selectors(session, ["main"], timeout=1.0)
        assert found == ["main"]

    @pytest.mark.asyncio
    async def test_missing_times_out(self, renderer: FakeRenderer) -> None:
        """Test missing selectors give up at the timeout without raising."""
        session = await _session_on(renderer, "https://x.com/")
        found = await ReadinessDetector(FAST_READINESS).wait_for_selectors(
            session, ["main", "#never"], timeout=0.05
        )
        assert found == ["main"]

    @pytest.mark.asyncio
    async def test_probe_error_is_non_fatal(self, renderer: FakeRenderer) -> None:
        """Test probe failures end the wait quietly."""
        renderer.failing_probes = {Probe.SELECTORS_PRESENT}
        session = await _session_on(renderer, "https://x.com/")
        found = await ReadinessDetector(FAST_READINESS).wait_for_selectors(session, ["main"], timeout=1.0)
        assert found == []

    @pytest.mark.asyncio
    async def test_no_selectors(self, renderer: FakeRenderer) -> None:
        """Test an empty wait-list is a no-op."""
        session = await _session_on(renderer, "https://x.com/")
        assert await ReadinessDetector(FAST_READINESS).wait_for_selectors(session, [], timeout=1.0) == []
