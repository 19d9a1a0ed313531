"""Seed URL discovery from sitemap.xml files."""

import asyncio
import contextlib
import gzip
from collections.abc import AsyncIterator
from urllib.parse import urlsplit
from xml.etree import ElementTree as ET

import httpx
import structlog

from rendercrawl.config import Settings, get_settings
from rendercrawl.crawler.url import canonicalize_url, is_internal_url

logger = structlog.get_logger(__name__)

# XML namespaces for sitemap
SITEMAP_NS = {
    "sm": "http://www.sitemaps.org/schemas/sitemap/0.9",
}


def parse_sitemap_xml(content: bytes) -> tuple[list[str], list[str]]:
    """
    Parse sitemap XML content.

    Returns:
        Tuple of (page_urls, nested_sitemap_urls)

    Raises:
        ValueError: content is not XML
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ValueError(f"Invalid XML: {e}") from e

    urls: list[str] = []
    nested: list[str] = []

    # <sitemapindex> contains <sitemap> elements with <loc>
    if root.tag.endswith("sitemapindex"):
        for loc in root.findall(".//sm:sitemap/sm:loc", SITEMAP_NS) + root.findall(".//sitemap/loc"):
            if loc.text and loc.text.strip() not in nested:
                nested.append(loc.text.strip())

    # <urlset> contains <url> elements; some sitemaps omit the namespace
    for loc in root.findall(".//sm:url/sm:loc", SITEMAP_NS) + root.findall(".//url/loc"):
        if loc.text and loc.text.strip() not in urls:
            urls.append(loc.text.strip())

    return urls, nested


class SitemapDiscovery:
    """Collects page URLs from an origin's sitemap, following sitemap indexes."""

    def __init__(
        self,
        fetch_timeout: float = 10.0,
        nested_timeout: float = 5.0,
        total_timeout: float = 30.0,
        max_depth: int = 2,
        client: httpx.AsyncClient | None = None,
    ):
        self.fetch_timeout = fetch_timeout
        self.nested_timeout = nested_timeout
        self.total_timeout = total_timeout
        self.max_depth = max_depth
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> "SitemapDiscovery":
        return cls(
            fetch_timeout=settings.sitemap_fetch_timeout,
            nested_timeout=settings.sitemap_nested_timeout,
            total_timeout=settings.sitemap_total_timeout,
            max_depth=settings.sitemap_max_depth,
            client=client,
        )

    async def discover(self, targets: list[str], strict: bool = True) -> list[str]:
        """
        Seed URLs for a crawl: the targets plus in-scope sitemap URLs.

        Best-effort: any sitemap failure leaves just the targets.

        Args:
            targets: Crawl targets (canonicalized here)
            strict: Strict path matching for the scope filter

        Returns:
            Canonical URLs, targets first, without duplicates
        """
        canonical_targets = [c for c in (canonicalize_url(t) for t in targets) if c]
        seeds = list(dict.fromkeys(canonical_targets))
        if not seeds:
            return []

        origins: list[str] = []
        for target in seeds:
            parts = urlsplit(target)
            origin = f"{parts.scheme}://{parts.netloc}"
            if origin not in origins:
                origins.append(origin)

        # URLs gathered before a timeout are kept
        found: list[str] = []
        async with self._client_context() as client:
            for origin in origins:
                sitemap_url = f"{origin}/sitemap.xml"
                try:
                    await asyncio.wait_for(
                        self._collect(client, sitemap_url, 0, found),
                        timeout=self.total_timeout,
                    )
                except TimeoutError:
                    logger.info("sitemap_timeout", sitemap=sitemap_url, collected=len(found))
                except (httpx.HTTPError, ValueError) as e:
                    logger.info("sitemap_unavailable", sitemap=sitemap_url, error=str(e))

        scope = list(seeds)
        added = 0
        for url in found:
            canonical = canonicalize_url(url)
            if not canonical or canonical in seeds:
                continue
            if is_internal_url(canonical, scope, strict):
                seeds.append(canonical)
                added += 1

        logger.info("seed_urls_discovered", targets=len(canonical_targets), from_sitemap=added)
        return seeds

    @contextlib.asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=True) as client:
            yield client

    async def _collect(
        self,
        client: httpx.AsyncClient,
        sitemap_url: str,
        depth: int,
        sink: list[str],
    ) -> None:
        """Append the page URLs of ``sitemap_url`` and its nested sitemaps to ``sink``."""
        if depth > self.max_depth:
            logger.debug("sitemap_depth_limit", sitemap=sitemap_url)
            return

        timeout = self.fetch_timeout if depth == 0 else self.nested_timeout
        response = await client.get(sitemap_url, timeout=timeout)
        if response.status_code != 200:
            raise ValueError(f"HTTP {response.status_code}")

        content = response.content
        if sitemap_url.endswith(".gz"):
            with contextlib.suppress(OSError):
                content = gzip.decompress(content)

        page_urls, nested = parse_sitemap_xml(content)
        # Sitemap-looking entries in a urlset are not pages
        urls = [u for u in page_urls if not u.lower().endswith(".xml")]
        sink.extend(urls)
        logger.debug("sitemap_parsed", sitemap=sitemap_url, depth=depth, urls=len(urls))

        for nested_url in nested:
            try:
                await self._collect(client, nested_url, depth + 1, sink)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("nested_sitemap_failed", sitemap=nested_url, error=str(e))


async def discover_seed_urls(
    targets: list[str],
    strict: bool = True,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[str]:
    """
    Convenience function to discover seed URLs with process settings.

    Args:
        targets: Crawl targets
        strict: Strict path matching for the scope filter
        settings: Settings to read timeouts from (defaults to ``get_settings()``)
        client: Optional HTTP client to reuse

    Returns:
        Canonical seed URLs, targets first
    """
    discovery = SitemapDiscovery.from_settings(settings or get_settings(), client=client)
    return await discovery.discover(targets, strict)
