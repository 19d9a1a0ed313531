"""Single-active-job guard."""

import asyncio

import structlog

from rendercrawl.crawler.job import CrawlJob
from rendercrawl.exceptions import CrawlAlreadyActiveError

logger = structlog.get_logger(__name__)


class JobRegistry:
    """Tracks the one crawl job allowed to run at a time."""

    def __init__(self) -> None:
        self._active: CrawlJob | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> CrawlJob | None:
        return self._active

    async def start(self, job: CrawlJob) -> str:
        """
        Register and start ``job``.

        Returns:
            The job id

        Raises:
            CrawlAlreadyActiveError: another job is still running
        """
        async with self._lock:
            if self._active is not None:
                raise CrawlAlreadyActiveError(self._active.job_id)
            self._active = job

        job.add_done_callback(self._clear)
        try:
            return await job.start()
        except Exception:
            self._clear(job)
            raise

    def cancel_active(self) -> bool:
        """
        Cancel the running job, if any.

        The job stays registered until its workers have wound down, so a new
        job cannot start while the old one still holds the renderer.
        """
        if self._active is None:
            return False
        self._active.cancel()
        return True

    def _clear(self, job: CrawlJob) -> None:
        if self._active is job:
            self._active = None
            logger.info("active_crawl_cleared", job_id=job.job_id)
