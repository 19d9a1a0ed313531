"""Render-and-extract pipeline for a single URL."""

import asyncio

import structlog

from rendercrawl.crawler.diagnostics import ErrorLogger
from rendercrawl.crawler.pool import RendererPool
from rendercrawl.crawler.readiness import ReadinessDetector
from rendercrawl.crawler.renderer import Probe, RenderedPage, RenderOptions, RenderSession
from rendercrawl.exceptions import ProbeError, RenderError, RenderTimeoutError, format_error

logger = structlog.get_logger(__name__)

# Budget kept back from readiness waits so extraction can still finish in time
EXTRACTION_RESERVE = 2.0


class TabRenderer:
    """
    Fetches one URL through a pooled session.

    acquire -> navigate -> spoof visibility -> readiness -> selector wait ->
    extract -> release, all under one deadline.
    """

    def __init__(
        self,
        pool: RendererPool,
        detector: ReadinessDetector | None = None,
        error_logger: ErrorLogger | None = None,
    ):
        self.pool = pool
        self.detector = detector or ReadinessDetector()
        self.error_logger = error_logger

    async def render(self, url: str, options: RenderOptions | None = None) -> RenderedPage:
        """
        Render ``url`` and extract its content.

        Args:
            url: Canonical URL to fetch
            options: Timeout, selector wait-list and context choice

        Returns:
            RenderedPage with HTML, text, links and metadata

        Raises:
            RenderError: the fetch failed (RenderTimeoutError past the deadline)
        """
        options = options or RenderOptions()
        try:
            return await asyncio.wait_for(self._render(url, options), timeout=options.timeout)
        except TimeoutError as e:
            error = RenderTimeoutError(f"Timed out rendering {url} after {options.timeout:g}s", url=url)
            self._log_failure(error, url)
            raise error from e
        except RenderError as e:
            if e.url is None:
                e.url = url
                e.details["url"] = url
            self._log_failure(e, url)
            raise
        except Exception as e:
            error = RenderError(f"Failed to render {url}: {format_error(e)}", url=url)
            self._log_failure(error, url)
            raise error from e

    async def _render(self, url: str, options: RenderOptions) -> RenderedPage:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout

        session = await self.pool.acquire(isolated=options.isolated_context)
        try:
            await session.navigate(url, timeout=max(deadline - loop.time(), 0.0))
            await self._spoof_visibility(session, url)

            readiness = await self.detector.wait_until_ready(
                session, timeout=max(deadline - loop.time() - EXTRACTION_RESERVE, 0.0)
            )

            if options.wait_for_selectors:
                selector_budget = min(
                    self.detector.config.phase_cap,
                    max(deadline - loop.time() - EXTRACTION_RESERVE, 0.0),
                )
                found = await self.detector.wait_for_selectors(
                    session, options.wait_for_selectors, timeout=selector_budget
                )
                if len(found) < len(options.wait_for_selectors):
                    logger.info(
                        "selectors_missing",
                        url=url,
                        missing=[s for s in options.wait_for_selectors if s not in found],
                    )

            page = await session.extract()
        finally:
            self.pool.release(session)

        logger.debug(
            "page_rendered",
            url=url,
            session_id=session.session_id,
            text_length=len(page.text),
            links=len(page.links),
            ready_in_ms=int(readiness.elapsed * 1000),
        )
        return page

    async def _spoof_visibility(self, session: RenderSession, url: str) -> None:
        try:
            await session.run_probe(Probe.SPOOF_VISIBILITY)
        except ProbeError as e:
            logger.debug("visibility_spoof_failed", url=url, error=str(e))

    def _log_failure(self, error: RenderError, url: str) -> None:
        if self.error_logger is not None:
            self.error_logger.log_error("renderer", error, {"url": url, "code": error.code})
