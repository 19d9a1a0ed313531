"""Crawl engine: scope, frontier, rendering, readiness and persistence."""

# Playwright is only imported by browser.py; import it explicitly when needed:
# from rendercrawl.crawler.browser import PlaywrightRenderer

from rendercrawl.crawler.content import ContentDeduplicator, clean_text, compute_content_hash
from rendercrawl.crawler.diagnostics import ErrorLogger
from rendercrawl.crawler.fetcher import TabRenderer
from rendercrawl.crawler.frontier import Frontier
from rendercrawl.crawler.job import CrawlConfig, CrawlJob, CrawlProgress
from rendercrawl.crawler.links import LinkPolicy, extract_links_from_html, process_raw_links
from rendercrawl.crawler.pool import RendererPool
from rendercrawl.crawler.readiness import ReadinessConfig, ReadinessDetector, ReadinessResult
from rendercrawl.crawler.registry import JobRegistry
from rendercrawl.crawler.renderer import Probe, RenderedPage, Renderer, RenderOptions, RenderSession
from rendercrawl.crawler.sitemap import discover_seed_urls
from rendercrawl.crawler.storage import MemoryPageStore, PageStore, SQLPageStore
from rendercrawl.crawler.url import canonicalize_url, is_internal_url, is_under_base_path

__all__ = [
    # Job
    "CrawlConfig",
    "CrawlJob",
    "CrawlProgress",
    "Frontier",
    "JobRegistry",
    # Rendering
    "Probe",
    "ReadinessConfig",
    "ReadinessDetector",
    "ReadinessResult",
    "RenderedPage",
    "Renderer",
    "RendererPool",
    "RenderOptions",
    "RenderSession",
    "TabRenderer",
    # Content
    "ContentDeduplicator",
    "clean_text",
    "compute_content_hash",
    # Links and URLs
    "LinkPolicy",
    "canonicalize_url",
    "extract_links_from_html",
    "is_internal_url",
    "is_under_base_path",
    "process_raw_links",
    # Collaborators
    "ErrorLogger",
    "MemoryPageStore",
    "PageStore",
    "SQLPageStore",
    "discover_seed_urls",
]
