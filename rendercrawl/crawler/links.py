"""Link filtering, canonicalization and depth tagging."""

from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from bs4 import BeautifulSoup

from rendercrawl.crawler.url import (
    MAX_URL_LENGTH,
    SKIP_PREFIXES,
    canonicalize_url,
    has_skip_extension,
    is_http_url,
    is_internal_url,
    resolve_url,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LinkPolicy:
    """Job-wide rules deciding which discovered links join the frontier."""

    strict_path_matching: bool = True
    follow_external_links: bool = False
    max_external_hops: int = 1


@dataclass(frozen=True)
class DiscoveredLink:
    """A canonical URL tagged with its crawl depth (0 = in scope)."""

    url: str
    depth: int


def process_raw_links(
    raw_links: Iterable[str],
    page_url: str,
    base_urls: list[str],
    policy: LinkPolicy,
    current_depth: int = 0,
) -> list[DiscoveredLink]:
    """
    Filter and tag the outgoing links of one page.

    Internal links always get depth 0. External links are kept only when the
    policy follows them and ``current_depth + 1`` stays within the hop bound.
    Order is preserved and the first occurrence of a canonical URL wins.

    Args:
        raw_links: Hrefs as found on the page (absolute or relative)
        page_url: URL of the page the links came from
        base_urls: Canonical targets of the job
        policy: Scope and external-link rules
        current_depth: Depth assigned to the page itself

    Returns:
        Discovered links in page order, without duplicates
    """
    links: list[DiscoveredLink] = []
    seen: set[str] = set()
    external_depth = current_depth + 1

    for raw in raw_links:
        if not raw or not isinstance(raw, str):
            continue
        href = raw.strip()
        if not href:
            continue

        if len(href) > MAX_URL_LENGTH:
            logger.debug("link_too_long", page=page_url, length=len(href))
            continue

        if href.lower().startswith(SKIP_PREFIXES):
            continue

        absolute = resolve_url(href, page_url)
        if not absolute or not is_http_url(absolute):
            continue

        if has_skip_extension(absolute):
            logger.debug("link_skipped_download", url=absolute)
            continue

        canonical = canonicalize_url(absolute)
        if not canonical or canonical in seen:
            continue
        seen.add(canonical)

        if is_internal_url(canonical, base_urls, policy.strict_path_matching):
            links.append(DiscoveredLink(url=canonical, depth=0))
        elif policy.follow_external_links and external_depth <= policy.max_external_hops:
            links.append(DiscoveredLink(url=canonical, depth=external_depth))

    internal = sum(1 for link in links if link.depth == 0)
    logger.debug(
        "links_processed",
        page=page_url,
        total=len(links),
        internal=internal,
        external=len(links) - internal,
    )
    return links


def hrefs_from_html(html: str) -> list[str]:
    """Collect ``href`` values of anchors and image-map areas in document order."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return [tag["href"] for tag in soup.find_all(["a", "area"], href=True)]


def extract_links_from_html(
    html: str,
    page_url: str,
    base_urls: list[str],
    policy: LinkPolicy,
    current_depth: int = 0,
) -> list[DiscoveredLink]:
    """Parse HTML and run its links through :func:`process_raw_links`."""
    return process_raw_links(hrefs_from_html(html), page_url, base_urls, policy, current_depth)
