"""Text cleanup, content hashing and duplicate detection."""

import hashlib
import re

import structlog

from rendercrawl.crawler.storage import PageRecord, PageStore

logger = structlog.get_logger(__name__)

EMPTY_CONTENT_PLACEHOLDER = "No content extracted from this page."

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def clean_text(text: str | None) -> str:
    """
    Tidy the visible text of a rendered page.

    The renderer's text is already free of markup, so this only collapses
    runs of blank lines, strips trailing whitespace and trims the ends.
    """
    if not text:
        return EMPTY_CONTENT_PLACEHOLDER
    cleaned = text.replace("\r\n", "\n")
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n", cleaned)
    cleaned = "\n".join(line.rstrip() for line in cleaned.split("\n"))
    cleaned = cleaned.strip()
    return cleaned or EMPTY_CONTENT_PLACEHOLDER


def compute_content_hash(text: str) -> str:
    """SHA-256 hex digest of page text. Only the text is hashed, never metadata."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ContentDeduplicator:
    """Resolves "same content, different URL" against a job's hash index."""

    def __init__(self, store: PageStore):
        self.store = store

    async def find_duplicate(self, job_id: str, content_hash: str, url: str) -> PageRecord | None:
        """
        Look up a page of this job with identical content.

        On a hit ``url`` is appended to the existing page's alternate URLs and
        the updated page is returned; the caller must not create a new record.

        Args:
            job_id: Job the content belongs to
            content_hash: Digest from :func:`compute_content_hash`
            url: Canonical URL that served the content

        Returns:
            The existing page, or None if the content is new to this job
        """
        existing = await self.store.get_page_by_content_hash(job_id, content_hash)
        if existing is None:
            return None

        logger.info(
            "duplicate_content",
            url=url,
            same_as=existing.url,
            page_id=existing.id,
        )
        return await self.store.append_alternate_url(existing.id, url)
