"""Command-line entry point: run one crawl job to completion."""

import argparse
import asyncio
import contextlib
import signal
import sys
from functools import partial

import structlog

from rendercrawl.config import (
    MAX_MAX_EXTERNAL_HOPS,
    MAX_MAX_WORKERS,
    MIN_MAX_EXTERNAL_HOPS,
    MIN_MAX_WORKERS,
    Settings,
    get_settings,
)
from rendercrawl.crawler.browser import PlaywrightRenderer
from rendercrawl.crawler.diagnostics import ErrorLogger
from rendercrawl.crawler.fetcher import TabRenderer
from rendercrawl.crawler.job import CrawlConfig, CrawlJob, CrawlProgress
from rendercrawl.crawler.pool import RendererPool
from rendercrawl.crawler.readiness import ReadinessDetector
from rendercrawl.crawler.registry import JobRegistry
from rendercrawl.crawler.sitemap import discover_seed_urls
from rendercrawl.crawler.storage import SQLPageStore
from rendercrawl.database import create_engine_for
from rendercrawl.exceptions import RenderCrawlError
from rendercrawl.logging import setup_logging
from rendercrawl.models import JobStatus

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rendercrawl",
        description="Crawl documentation paths through a real browser and store the rendered text",
    )
    parser.add_argument("urls", nargs="+", metavar="URL", help="Target URL(s) to crawl")
    parser.add_argument(
        "--workers",
        type=int,
        help=f"Concurrent workers ({MIN_MAX_WORKERS}-{MAX_MAX_WORKERS})",
    )
    parser.add_argument("--page-limit", type=int, help="Maximum unique pages per target URL")
    parser.add_argument(
        "--no-strict",
        action="store_true",
        help="Loose path matching (/api also matches /api-docs)",
    )
    parser.add_argument("--skip-cache", action="store_true", help="Re-render pages already stored")
    parser.add_argument("--incognito", action="store_true", help="Render in an isolated browser context")
    parser.add_argument("--follow-external", action="store_true", help="Follow links outside the targets")
    parser.add_argument(
        "--max-hops",
        type=int,
        help=f"External link depth ({MIN_MAX_EXTERNAL_HOPS}-{MAX_MAX_EXTERNAL_HOPS})",
    )
    parser.add_argument(
        "--wait-for",
        action="append",
        default=[],
        metavar="SELECTOR",
        help="CSS selector to wait for before extracting (repeatable)",
    )
    parser.add_argument("--timeout", type=float, help="Per-page timeout in seconds")
    parser.add_argument("--database-url", help="SQLAlchemy database URL for the page store")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    return parser


def config_from_args(args: argparse.Namespace, settings: Settings) -> CrawlConfig:
    """Map parsed arguments onto a crawl config, falling back to settings."""
    return CrawlConfig.from_settings(
        settings,
        max_workers=args.workers,
        page_limit=args.page_limit,
        strict_path_matching=False if args.no_strict else None,
        skip_cache=args.skip_cache,
        use_isolated_context=args.incognito,
        follow_external_links=args.follow_external,
        max_external_hops=args.max_hops,
        wait_for_selectors=list(args.wait_for),
        request_timeout=args.timeout,
    )


def print_progress(progress: CrawlProgress) -> None:
    print(
        f"[{progress.status}] saved {progress.pages_processed}, "
        f"failed {progress.pages_failed}, queued {progress.queue_size}, "
        f"in progress {len(progress.in_progress)}",
        file=sys.stderr,
    )


def exit_code_for(status: str) -> int:
    if status == JobStatus.INTERRUPTED.value:
        return EXIT_INTERRUPTED
    if status == JobStatus.COMPLETED_WITH_ERRORS.value:
        return EXIT_ERRORS
    return EXIT_OK


async def run_crawl(args: argparse.Namespace, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    config = config_from_args(args, settings)

    store = SQLPageStore(
        create_engine_for(args.database_url or settings.database_url, echo=settings.debug)
    )
    await store.create_schema()
    error_logger = ErrorLogger(max_entries=settings.diagnostics_max_entries)

    try:
        async with PlaywrightRenderer.from_settings(settings, headless=not args.headed) as renderer:
            fetcher = TabRenderer(RendererPool(renderer), ReadinessDetector(), error_logger)
            job = CrawlJob(
                args.urls,
                store,
                fetcher,
                config=config,
                discover=partial(discover_seed_urls, settings=settings),
                error_logger=error_logger,
                on_progress=print_progress,
            )

            loop = asyncio.get_running_loop()
            # No signal handlers on Windows event loops; Ctrl-C then aborts the run
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, job.cancel)

            registry = JobRegistry()
            job_id = await registry.start(job)
            progress = await job.wait()
    finally:
        await store.close()

    print(f"Job {job_id}: {progress.status}")
    print(f"  pages saved:  {progress.pages_processed}")
    print(f"  pages failed: {progress.pages_failed}")
    for error in error_logger.get_errors():
        if error.source != "crawler":
            continue
        print(f"  - {error.context.get('url', '?')}: {error.message}")
    return exit_code_for(progress.status)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(run_crawl(args))
    except RenderCrawlError as e:
        logger.error("crawl_failed", code=e.code, error=e.message)
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
