"""Crawl job orchestration: workers, quotas, caching and deduplication."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from typing import Any

import structlog

from rendercrawl.config import (
    DEFAULT_MAX_EXTERNAL_HOPS,
    DEFAULT_MAX_WORKERS,
    EXPECTED_SCHEMA_VERSION,
    MAX_MAX_EXTERNAL_HOPS,
    MAX_MAX_WORKERS,
    MIN_MAX_EXTERNAL_HOPS,
    MIN_MAX_WORKERS,
    Settings,
)
from rendercrawl.crawler.content import ContentDeduplicator, clean_text, compute_content_hash
from rendercrawl.crawler.diagnostics import ErrorLogger
from rendercrawl.crawler.fetcher import TabRenderer
from rendercrawl.crawler.frontier import Frontier
from rendercrawl.crawler.links import (
    DiscoveredLink,
    LinkPolicy,
    extract_links_from_html,
    process_raw_links,
)
from rendercrawl.crawler.renderer import RenderOptions
from rendercrawl.crawler.storage import PageRecord, PageStore
from rendercrawl.crawler.url import canonicalize_url
from rendercrawl.exceptions import InvalidTargetError, RenderError, StorageSchemaError, format_error
from rendercrawl.models import JobStatus

logger = structlog.get_logger(__name__)

SeedDiscovery = Callable[[list[str], bool], Awaitable[list[str]]]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass
class CrawlConfig:
    """Per-job crawl options."""

    max_workers: int = DEFAULT_MAX_WORKERS
    page_limit: int | None = None  # per target; None or <= 0 means unlimited
    strict_path_matching: bool = True
    skip_cache: bool = False
    use_isolated_context: bool = False
    follow_external_links: bool = False
    max_external_hops: int = DEFAULT_MAX_EXTERNAL_HOPS
    wait_for_selectors: list[str] = field(default_factory=list)
    request_timeout: float = 30.0
    request_delay: float = 0.5
    pause_poll_interval: float = 1.0
    idle_poll_interval: float = 0.5

    def __post_init__(self) -> None:
        if self.max_workers is None:
            self.max_workers = DEFAULT_MAX_WORKERS
        if self.max_external_hops is None:
            self.max_external_hops = DEFAULT_MAX_EXTERNAL_HOPS
        self.max_workers = _clamp(self.max_workers, MIN_MAX_WORKERS, MAX_MAX_WORKERS)
        self.max_external_hops = _clamp(self.max_external_hops, MIN_MAX_EXTERNAL_HOPS, MAX_MAX_EXTERNAL_HOPS)
        if self.page_limit is not None and self.page_limit <= 0:
            self.page_limit = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "CrawlConfig":
        """Build a config from process defaults, then apply ``overrides``."""
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown crawl options: {sorted(unknown)}")

        values: dict[str, Any] = {
            "max_workers": settings.max_workers,
            "strict_path_matching": settings.strict_path_matching,
            "max_external_hops": settings.max_external_hops,
            "request_timeout": settings.request_timeout,
            "request_delay": settings.request_delay,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def link_policy(self) -> LinkPolicy:
        return LinkPolicy(
            strict_path_matching=self.strict_path_matching,
            follow_external_links=self.follow_external_links,
            max_external_hops=self.max_external_hops,
        )


@dataclass
class CrawlProgress:
    """Point-in-time view of a job's progress."""

    pages_found: int
    pages_processed: int
    pages_failed: int
    queue_size: int
    in_progress: list[str]
    status: str = JobStatus.PENDING.value
    job_id: str | None = None


class CrawlJob:
    """
    One crawl over a set of targets.

    ``start()`` seeds the frontier and launches the workers; the job finishes
    on its own once the last worker exits. Use ``run()`` to start and wait.
    """

    def __init__(
        self,
        targets: list[str] | str,
        store: PageStore,
        fetcher: TabRenderer,
        config: CrawlConfig | None = None,
        discover: SeedDiscovery | None = None,
        error_logger: ErrorLogger | None = None,
        on_progress: Callable[[CrawlProgress], None] | None = None,
    ):
        self.targets = [targets] if isinstance(targets, str) else list(targets)
        canonical = [canonicalize_url(t) for t in self.targets]
        self.canonical_targets = list(dict.fromkeys(t for t in canonical if t))
        if not self.canonical_targets:
            raise InvalidTargetError(self.targets)

        self.store = store
        self.fetcher = fetcher
        self.config = config or CrawlConfig()
        self.discover = discover
        self.error_logger = error_logger or ErrorLogger()
        self.on_progress = on_progress

        self.policy = self.config.link_policy
        self.frontier = Frontier(self.canonical_targets, self.policy, self.config.page_limit)
        self.deduplicator = ContentDeduplicator(store)
        # Hash lookup and save must not interleave across workers
        self._save_lock = asyncio.Lock()

        self.job_id: str | None = None
        self.status = JobStatus.PENDING
        self._paused = False
        self._cancelled = False
        self._active_workers = 0
        self._tasks: list[asyncio.Task[None]] = []
        self._finished = asyncio.Event()
        self._finishing = False
        self._done_callbacks: list[Callable[["CrawlJob"], None]] = []

    # Control surface

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()

    def pause(self) -> None:
        self._paused = True
        logger.info("crawl_paused", job_id=self.job_id)

    def resume(self) -> None:
        self._paused = False
        logger.info("crawl_resumed", job_id=self.job_id)

    def cancel(self) -> None:
        """Request cancellation. In-flight fetches finish but their results are dropped."""
        self._cancelled = True
        logger.info("crawl_cancel_requested", job_id=self.job_id)

    def add_done_callback(self, callback: Callable[["CrawlJob"], None]) -> None:
        self._done_callbacks.append(callback)

    def progress(self) -> CrawlProgress:
        return CrawlProgress(
            pages_found=self.frontier.pages_found,
            pages_processed=self.frontier.completed_count,
            pages_failed=self.frontier.failed_count,
            queue_size=self.frontier.queue_size,
            in_progress=self.frontier.in_flight,
            status=self.status.value,
            job_id=self.job_id,
        )

    # Lifecycle

    async def start(self) -> str:
        """
        Create the job record, seed the frontier and launch the workers.

        Returns:
            The new job id
        """
        await self._check_schema_version()

        self.job_id = await self.store.create_job(self.targets, self.canonical_targets)
        self.status = JobStatus.IN_PROGRESS
        await self.store.update_job(self.job_id, status=self.status.value)

        seeds = await self._discover_seeds()
        for url in seeds:
            self.frontier.enqueue(url)
        await self.store.update_job(self.job_id, pages_found=self.frontier.queue_size)

        logger.info(
            "crawl_started",
            job_id=self.job_id,
            targets=self.canonical_targets,
            seeds=self.frontier.queue_size,
            workers=self.config.max_workers,
            page_limit=self.config.page_limit,
        )

        self._active_workers = self.config.max_workers
        self._tasks = [
            asyncio.create_task(self._run_worker(worker_id), name=f"crawl-worker-{worker_id}")
            for worker_id in range(1, self.config.max_workers + 1)
        ]
        return self.job_id

    async def wait(self) -> CrawlProgress:
        """Wait for the job to finish and return the final progress."""
        await self._finished.wait()
        return self.progress()

    async def run(self) -> CrawlProgress:
        await self.start()
        return await self.wait()

    async def _check_schema_version(self) -> None:
        version = await self.store.get_schema_version()
        if version < EXPECTED_SCHEMA_VERSION:
            logger.warning(
                "storage_migration_needed",
                current_version=version,
                expected_version=EXPECTED_SCHEMA_VERSION,
                guidance=StorageSchemaError.GUIDANCE,
            )

    async def _discover_seeds(self) -> list[str]:
        if self.discover is None:
            return list(self.canonical_targets)
        try:
            seeds = await self.discover(self.canonical_targets, self.config.strict_path_matching)
        except Exception as e:
            logger.warning("seed_discovery_failed", error=str(e))
            return list(self.canonical_targets)
        # Targets always seed the crawl, ahead of discovered URLs
        return list(dict.fromkeys([*self.canonical_targets, *seeds]))

    # Workers

    async def _run_worker(self, worker_id: int) -> None:
        frontier = self.frontier
        try:
            with structlog.contextvars.bound_contextvars(job_id=self.job_id, worker_id=worker_id):
                logger.debug("worker_started")
                while not self._cancelled and not frontier.all_limits_met():
                    if self._paused:
                        await asyncio.sleep(self.config.pause_poll_interval)
                        continue

                    if not frontier.can_grab_more():
                        logger.info("worker_stopping_quota", completed=frontier.completed_count)
                        break

                    url = frontier.claim_next()
                    if url is None:
                        if frontier.in_flight_count:
                            # Busy workers may still discover new URLs
                            await asyncio.sleep(self.config.idle_poll_interval)
                            continue
                        break

                    logger.debug("worker_processing", url=url, in_flight=frontier.in_flight_count)
                    try:
                        await self.process_url(url)
                        await self.store.update_job(
                            self.job_id,
                            pages_processed=frontier.completed_count,
                            pages_found=frontier.pages_found,
                        )
                        self._notify_progress()
                    except Exception as e:
                        if self._cancelled:
                            logger.info("worker_interrupted", url=url)
                        else:
                            await self._record_failure(url, e, worker_id)
                    finally:
                        frontier.release(url)

                    if frontier.all_limits_met():
                        logger.info("worker_stopping_goal_met", completed=frontier.completed_count)
                        break

                    await asyncio.sleep(self.config.request_delay)
                logger.debug("worker_finished")
        finally:
            self._active_workers -= 1
            if self._active_workers == 0:
                await self._finish()

    async def _record_failure(self, url: str, error: Exception, worker_id: int) -> None:
        detail = format_error(error)
        self.frontier.fail(url, detail)
        logger.warning("url_failed", url=url, error=detail)

        if isinstance(error, StorageSchemaError):
            logger.error("storage_migration_required", url=url, guidance=error.guidance)

        self.error_logger.log_error(
            "crawler",
            error,
            {"url": url, "job_id": self.job_id, "worker_id": worker_id, "action": "process_url"},
        )
        try:
            await self.store.update_job(
                self.job_id,
                pages_failed=self.frontier.failed_count,
                errors=self.frontier.errors(),
            )
        except Exception as e:
            logger.warning("job_update_failed", job_id=self.job_id, error=str(e))

    # Processing one URL

    async def process_url(self, url: str) -> None:
        """
        Fetch (or reuse) one URL, grow the frontier and persist unique content.

        Raises:
            RenderError: the page could not be rendered
            StorageSchemaError: the store rejected the page
        """
        if not self.config.skip_cache:
            cached = await self.store.get_page_by_canonical_url(url)
            if cached is not None:
                logger.debug("cache_hit", url=url)
                try:
                    await self._process_cached(url, cached)
                    return
                except StorageSchemaError as e:
                    # Old schema cannot hold the cached page for a new job; fetch it instead
                    logger.warning("cache_schema_conflict", url=url, guidance=e.guidance)

        page = await self.fetcher.render(url, self._render_options())
        if self._cancelled:
            logger.debug("result_discarded_cancelled", url=url)
            return

        depth = self.frontier.depth_of(url)
        if page.links:
            links = process_raw_links(page.links, url, self.canonical_targets, self.policy, depth)
        else:
            links = extract_links_from_html(page.html, url, self.canonical_targets, self.policy, depth)
        self._enqueue_links(links)

        text = clean_text(page.text)
        await self._store_unique(
            url,
            content=text,
            html=page.html,
            content_hash=compute_content_hash(text),
            metadata=page.metadata,
            markdown=page.markdown,
            markdown_meta=page.markdown_meta,
        )

    async def _process_cached(self, url: str, cached: PageRecord) -> None:
        await self._store_unique(
            url,
            content=cached.content,
            html=cached.html,
            content_hash=cached.content_hash or compute_content_hash(cached.content),
            metadata=cached.metadata,
            markdown=cached.markdown,
            markdown_meta=cached.markdown_meta,
        )
        await self._harvest_links(url, cached.html)

    async def _harvest_links(self, url: str, html: str | None) -> None:
        """
        Enqueue links of a cached page, rendering it if no HTML was kept.

        The page itself is already accounted for, so a failed render only
        costs its links.
        """
        if not html:
            logger.debug("cache_missing_html", url=url)
            try:
                html = (await self.fetcher.render(url, self._render_options())).html
            except RenderError as e:
                logger.warning("cache_link_render_failed", url=url, error=format_error(e))
                self.error_logger.log_error(
                    "crawler", e, {"url": url, "job_id": self.job_id, "action": "harvest_links"}
                )
                return
        links = extract_links_from_html(
            html, url, self.canonical_targets, self.policy, self.frontier.depth_of(url)
        )
        self._enqueue_links(links)

    async def _store_unique(self, url: str, content: str, content_hash: str, **fields: Any) -> bool:
        """Join an existing page with the same content, or save a new one."""
        async with self._save_lock:
            if await self.deduplicator.find_duplicate(self.job_id, content_hash, url):
                return False
            return await self._save_if_capacity(url, content=content, content_hash=content_hash, **fields)

    async def _save_if_capacity(
        self,
        url: str,
        content: str,
        html: str | None,
        content_hash: str,
        metadata: dict[str, Any] | None,
        markdown: str | None,
        markdown_meta: dict[str, Any] | None,
    ) -> bool:
        # Second quota check: another worker may have filled the target meanwhile
        target = self.frontier.target_for(url)
        if not self.frontier.has_capacity(target):
            logger.info(
                "quota_reached_drop",
                url=url,
                target=target,
                completed=self.frontier.completed_for(target) if target else None,
            )
            return False
        if self._cancelled:
            return False

        await self.store.save_page(
            self.job_id,
            url,
            content,
            html,
            content_hash,
            metadata=metadata,
            markdown=markdown,
            markdown_meta=markdown_meta,
        )
        self.frontier.complete(url)
        logger.info("page_saved", url=url, content_length=len(content))
        return True

    def _enqueue_links(self, links: list[DiscoveredLink]) -> int:
        added = sum(1 for link in links if self.frontier.enqueue(link.url, link.depth))
        if added:
            logger.debug("links_enqueued", added=added, found=len(links))
        return added

    def _render_options(self) -> RenderOptions:
        return RenderOptions(
            timeout=self.config.request_timeout,
            wait_for_selectors=list(self.config.wait_for_selectors),
            isolated_context=self.config.use_isolated_context,
        )

    # Completion

    async def _finish(self) -> None:
        if self._finishing:
            return
        self._finishing = True

        frontier = self.frontier
        if self._cancelled or not frontier.can_grab_more():
            frontier.clear_pending()

        if self._cancelled:
            self.status = JobStatus.INTERRUPTED
        elif frontier.failed_count:
            self.status = JobStatus.COMPLETED_WITH_ERRORS
        else:
            self.status = JobStatus.COMPLETED

        try:
            await self.store.update_job(
                self.job_id,
                status=self.status.value,
                pages_processed=frontier.completed_count,
                pages_failed=frontier.failed_count,
                pages_found=frontier.pages_found,
            )
        finally:
            await self.fetcher.pool.teardown_all()
            logger.info(
                "crawl_completed",
                job_id=self.job_id,
                status=self.status.value,
                pages_processed=frontier.completed_count,
                pages_failed=frontier.failed_count,
            )
            self._notify_progress()
            self._finished.set()
            for callback in self._done_callbacks:
                callback(self)

    def _notify_progress(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.progress())
        except Exception as e:
            logger.warning("progress_callback_failed", error=str(e))
