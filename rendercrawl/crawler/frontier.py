"""Crawl frontier: queue, in-flight and completed URL state of one job.

All methods are synchronous. Workers run on one event loop, so each call
is atomic with respect to the other workers.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from rendercrawl.crawler.links import LinkPolicy
from rendercrawl.crawler.url import canonicalize_url, match_base_url

logger = structlog.get_logger(__name__)


@dataclass
class FailedURL:
    """A URL whose processing failed, with the formatted error."""

    url: str
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Frontier:
    """
    URL bookkeeping and per-target page quotas for one crawl job.

    A canonical URL is in at most one of queue, in-flight and completed at
    any time. URLs leave the in-flight set as completed, failed or settled
    (processed without producing a new page, e.g. duplicate content); all
    three are remembered so a URL is never enqueued twice.
    """

    def __init__(
        self,
        targets: list[str],
        policy: LinkPolicy | None = None,
        page_limit: int | None = None,
    ):
        self.targets = list(targets)
        self.policy = policy or LinkPolicy()
        self.page_limit = page_limit if page_limit and page_limit > 0 else None

        self._queue: deque[str] = deque()
        self._queued: set[str] = set()
        self._in_flight: set[str] = set()
        self._completed: set[str] = set()
        self._settled: set[str] = set()
        self._failed: dict[str, FailedURL] = {}
        self._depths: dict[str, int] = {}
        self._target_completed: dict[str, set[str]] = {t: set() for t in self.targets}
        self._target_in_flight: dict[str, set[str]] = {t: set() for t in self.targets}

    # Counts and views

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def completed(self) -> set[str]:
        return set(self._completed)

    @property
    def completed_count(self) -> int:
        return len(self._completed)

    @property
    def failed(self) -> dict[str, FailedURL]:
        return dict(self._failed)

    @property
    def failed_count(self) -> int:
        return len(self._failed)

    @property
    def pages_found(self) -> int:
        return len(self._queue) + len(self._in_flight) + len(self._completed)

    def queued_urls(self) -> list[str]:
        return list(self._queue)

    def depth_of(self, url: str) -> int:
        return self._depths.get(url, 0)

    def completed_for(self, target: str) -> int:
        return len(self._target_completed.get(target, ()))

    def is_known(self, url: str) -> bool:
        return (
            url in self._queued
            or url in self._in_flight
            or url in self._completed
            or url in self._failed
            or url in self._settled
        )

    # Quota checks

    def target_for(self, url: str) -> str | None:
        """First target whose scope contains ``url``."""
        return match_base_url(url, self.targets, self.policy.strict_path_matching)

    def has_capacity(self, target: str | None) -> bool:
        """Whether ``target`` may still gain pages. Counts completed pages only."""
        if self.page_limit is None or target is None:
            return True
        return self.completed_for(target) < self.page_limit

    def has_met_limit(self, target: str) -> bool:
        if self.page_limit is None:
            return False
        return self.completed_for(target) >= self.page_limit

    def can_grab_more(self) -> bool:
        """Conservative check: true while any target still has capacity."""
        if self.page_limit is None:
            return True
        return any(self.has_capacity(target) for target in self.targets)

    def all_limits_met(self) -> bool:
        """Liberal check: true only once every target has met its limit."""
        if self.page_limit is None:
            return False
        return all(self.has_met_limit(target) for target in self.targets)

    # Transitions

    def enqueue(self, url: str, depth: int = 0) -> bool:
        """
        Add a URL to the queue if it is new and allowed.

        Internal URLs always get depth 0 and are skipped once their target is
        full. External URLs need the follow flag and a depth within the hop
        bound.

        Returns:
            True if the URL was queued
        """
        canonical = canonicalize_url(url)
        if not canonical or self.is_known(canonical):
            return False

        target = self.target_for(canonical)
        if target is not None:
            depth = 0
            if not self.has_capacity(target):
                return False
        else:
            if not self.policy.follow_external_links:
                return False
            if depth > self.policy.max_external_hops:
                logger.debug("external_hop_limit", url=canonical, depth=depth)
                return False

        self._depths[canonical] = depth
        self._queue.append(canonical)
        self._queued.add(canonical)
        return True

    def claim_next(self) -> str | None:
        """
        Move the next eligible URL from the queue to in-flight.

        URLs whose target is already full are dropped from the queue.
        """
        while self._queue:
            url = self._queue.popleft()
            self._queued.discard(url)
            target = self.target_for(url)
            if not self.has_capacity(target):
                logger.debug("target_full_skip", url=url, target=target)
                self._settled.add(url)
                continue

            self._in_flight.add(url)
            if target is not None:
                self._target_in_flight[target].add(url)
            return url
        return None

    def complete(self, url: str) -> None:
        """Record unique content persisted for ``url``."""
        self._leave_in_flight(url)
        self._completed.add(url)
        target = self.target_for(url)
        if target is not None:
            self._target_completed[target].add(url)

    def fail(self, url: str, error: str) -> None:
        """Record a failed URL with its formatted error."""
        self._leave_in_flight(url)
        self._failed[url] = FailedURL(url=url, error=error)

    def release(self, url: str) -> None:
        """Take ``url`` out of flight if it did not complete or fail."""
        if url in self._in_flight:
            self._leave_in_flight(url)
            self._settled.add(url)

    def clear_pending(self) -> None:
        """Forget all queued and in-flight URLs."""
        self._queue.clear()
        self._queued.clear()
        self._in_flight.clear()
        for urls in self._target_in_flight.values():
            urls.clear()

    def errors(self) -> list[dict[str, str]]:
        """Failed URLs in the shape stored on the job record."""
        return [
            {
                "url": failure.url,
                "canonical_url": failure.url,
                "error": failure.error,
                "timestamp": failure.failed_at.isoformat(),
            }
            for failure in self._failed.values()
        ]

    def _leave_in_flight(self, url: str) -> None:
        self._in_flight.discard(url)
        for urls in self._target_in_flight.values():
            urls.discard(url)
