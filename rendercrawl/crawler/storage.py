"""Storage for crawl jobs and extracted pages."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rendercrawl.config import EXPECTED_SCHEMA_VERSION
from rendercrawl.database import Base, create_session_maker
from rendercrawl.exceptions import RenderCrawlError, StorageSchemaError
from rendercrawl.models import CrawlJobRow, JobStatus, PageRow, SchemaInfo

logger = structlog.get_logger(__name__)

# Fields a caller may change through update_job
JOB_UPDATE_FIELDS = frozenset(
    ["status", "pages_found", "pages_processed", "pages_failed", "errors"]
)


class NotFoundError(RenderCrawlError):
    """A job or page does not exist in the store."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} with id '{identifier}' not found",
            code="not_found",
            details={"resource": resource, "id": identifier},
        )


@dataclass
class JobRecord:
    """A stored crawl job."""

    id: str
    targets: list[str]
    canonical_targets: list[str]
    status: str = JobStatus.PENDING.value
    pages_found: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PageRecord:
    """A stored page: one unique body of content within a job."""

    id: str
    job_id: str
    url: str
    canonical_url: str
    content: str
    content_hash: str | None
    html: str | None = None
    metadata: dict[str, Any] | None = None
    markdown: str | None = None
    markdown_meta: dict[str, Any] | None = None
    alternate_urls: list[str] = field(default_factory=list)
    status: str = "success"
    extracted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def content_length(self) -> int:
        return len(self.content)


class PageStore(ABC):
    """Persistence operations the crawl engine relies on."""

    @abstractmethod
    async def get_schema_version(self) -> int:
        """Return the schema version of the underlying store."""

    @abstractmethod
    async def create_job(self, targets: list[str], canonical_targets: list[str]) -> str:
        """Create a job record and return its id."""

    @abstractmethod
    async def update_job(self, job_id: str, **fields: Any) -> None:
        """Update progress/status fields of a job."""

    @abstractmethod
    async def get_job(self, job_id: str) -> JobRecord | None:
        """Load a job record."""

    @abstractmethod
    async def get_page_by_canonical_url(self, canonical_url: str) -> PageRecord | None:
        """Most recent page stored for a canonical URL, across all jobs."""

    @abstractmethod
    async def get_page_by_content_hash(self, job_id: str, content_hash: str) -> PageRecord | None:
        """Page of ``job_id`` whose content hashes to ``content_hash``."""

    @abstractmethod
    async def save_page(
        self,
        job_id: str,
        url: str,
        content: str,
        html: str | None,
        content_hash: str | None,
        metadata: dict[str, Any] | None = None,
        markdown: str | None = None,
        markdown_meta: dict[str, Any] | None = None,
    ) -> PageRecord:
        """Create a new page record."""

    @abstractmethod
    async def append_alternate_url(self, page_id: str, url: str) -> PageRecord:
        """Record ``url`` as another address serving a page's content."""

    @abstractmethod
    async def get_pages_by_job(self, job_id: str) -> list[PageRecord]:
        """All pages of a job, in creation order."""


def _check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - JOB_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {sorted(unknown)}")


class MemoryPageStore(PageStore):
    """In-process page store."""

    def __init__(self, schema_version: int = EXPECTED_SCHEMA_VERSION):
        self.schema_version = schema_version
        self._jobs: dict[str, JobRecord] = {}
        self._pages: dict[str, PageRecord] = {}
        self._by_hash: dict[tuple[str, str], str] = {}
        self._by_canonical: dict[str, str] = {}

    async def get_schema_version(self) -> int:
        return self.schema_version

    async def create_job(self, targets: list[str], canonical_targets: list[str]) -> str:
        job = JobRecord(
            id=uuid.uuid4().hex,
            targets=list(targets),
            canonical_targets=list(canonical_targets),
        )
        self._jobs[job.id] = job
        return job.id

    async def update_job(self, job_id: str, **fields: Any) -> None:
        _check_update_fields(fields)
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        for name, value in fields.items():
            setattr(job, name, value)
        job.updated_at = datetime.now(UTC)

    async def get_job(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        return replace(job, errors=list(job.errors)) if job else None

    async def get_page_by_canonical_url(self, canonical_url: str) -> PageRecord | None:
        page_id = self._by_canonical.get(canonical_url)
        return self._pages[page_id] if page_id else None

    async def get_page_by_content_hash(self, job_id: str, content_hash: str) -> PageRecord | None:
        page_id = self._by_hash.get((job_id, content_hash))
        return self._pages[page_id] if page_id else None

    async def save_page(
        self,
        job_id: str,
        url: str,
        content: str,
        html: str | None,
        content_hash: str | None,
        metadata: dict[str, Any] | None = None,
        markdown: str | None = None,
        markdown_meta: dict[str, Any] | None = None,
    ) -> PageRecord:
        page = PageRecord(
            id=uuid.uuid4().hex,
            job_id=job_id,
            url=url,
            canonical_url=url,
            content=content,
            content_hash=content_hash,
            html=html,
            metadata=metadata,
            markdown=markdown,
            markdown_meta=markdown_meta,
            alternate_urls=[url],
        )
        self._pages[page.id] = page
        self._by_canonical[url] = page.id
        if content_hash:
            self._by_hash.setdefault((job_id, content_hash), page.id)
        return page

    async def append_alternate_url(self, page_id: str, url: str) -> PageRecord:
        page = self._pages.get(page_id)
        if page is None:
            raise NotFoundError("Page", page_id)
        if url not in page.alternate_urls:
            page.alternate_urls.append(url)
        return page

    async def get_pages_by_job(self, job_id: str) -> list[PageRecord]:
        return [page for page in self._pages.values() if page.job_id == job_id]


def _row_to_job(row: CrawlJobRow) -> JobRecord:
    return JobRecord(
        id=row.id,
        targets=list(row.targets or []),
        canonical_targets=list(row.canonical_targets or []),
        status=row.status,
        pages_found=row.pages_found,
        pages_processed=row.pages_processed,
        pages_failed=row.pages_failed,
        errors=list(row.errors or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_page(row: PageRow) -> PageRecord:
    return PageRecord(
        id=row.id,
        job_id=row.job_id,
        url=row.url,
        canonical_url=row.canonical_url,
        content=row.content,
        content_hash=row.content_hash,
        html=row.html,
        metadata=row.page_metadata,
        markdown=row.markdown,
        markdown_meta=row.markdown_meta,
        alternate_urls=list(row.alternate_urls or []),
        status=row.status,
        extracted_at=row.extracted_at,
    )


class SQLPageStore(PageStore):
    """Page store backed by SQLAlchemy (SQLite or PostgreSQL)."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.engine = engine
        self._session_maker = session_maker or create_session_maker(engine)

    async def create_schema(self) -> None:
        """
        Create missing tables and stamp the schema version.

        A database that already had a ``pages`` table but no version row is
        left unstamped, so it reports the legacy version.
        """
        async with self.engine.begin() as conn:
            had_pages = await conn.run_sync(lambda sync: inspect(sync).has_table("pages"))
            await conn.run_sync(Base.metadata.create_all)

        async with self._session_maker() as session:
            info = await session.get(SchemaInfo, 1)
            if info is None and not had_pages:
                session.add(SchemaInfo(id=1, version=EXPECTED_SCHEMA_VERSION))
                await session.commit()

        logger.debug("schema_ready", created=not had_pages)

    async def get_schema_version(self) -> int:
        async with self._session_maker() as session:
            info = await session.get(SchemaInfo, 1)
            return info.version if info else 1

    async def create_job(self, targets: list[str], canonical_targets: list[str]) -> str:
        async with self._session_maker() as session:
            row = CrawlJobRow(
                targets=list(targets),
                canonical_targets=list(canonical_targets),
                status=JobStatus.PENDING.value,
                errors=[],
            )
            session.add(row)
            await session.commit()
            return row.id

    async def update_job(self, job_id: str, **fields: Any) -> None:
        _check_update_fields(fields)
        async with self._session_maker() as session:
            row = await session.get(CrawlJobRow, job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            for name, value in fields.items():
                setattr(row, name, list(value) if name == "errors" else value)
            await session.commit()

    async def get_job(self, job_id: str) -> JobRecord | None:
        async with self._session_maker() as session:
            row = await session.get(CrawlJobRow, job_id)
            return _row_to_job(row) if row else None

    async def get_page_by_canonical_url(self, canonical_url: str) -> PageRecord | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(PageRow)
                .where(PageRow.canonical_url == canonical_url)
                .order_by(PageRow.extracted_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _row_to_page(row) if row else None

    async def get_page_by_content_hash(self, job_id: str, content_hash: str) -> PageRecord | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(PageRow)
                .where(PageRow.job_id == job_id, PageRow.content_hash == content_hash)
                .order_by(PageRow.extracted_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _row_to_page(row) if row else None

    async def save_page(
        self,
        job_id: str,
        url: str,
        content: str,
        html: str | None,
        content_hash: str | None,
        metadata: dict[str, Any] | None = None,
        markdown: str | None = None,
        markdown_meta: dict[str, Any] | None = None,
    ) -> PageRecord:
        row = PageRow(
            job_id=job_id,
            url=url,
            canonical_url=url,
            content=content,
            content_hash=content_hash,
            content_length=len(content),
            html=html,
            page_metadata=metadata,
            markdown=markdown,
            markdown_meta=markdown_meta,
            alternate_urls=[url],
            status="success",
        )
        async with self._session_maker() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.error("page_save_constraint_error", url=url, job_id=job_id, error=str(e))
                raise StorageSchemaError(
                    f"Could not save {url}: the page store rejected a second page "
                    "for the same canonical URL",
                    current_version=await self.get_schema_version(),
                ) from e
            return _row_to_page(row)

    async def append_alternate_url(self, page_id: str, url: str) -> PageRecord:
        async with self._session_maker() as session:
            row = await session.get(PageRow, page_id)
            if row is None:
                raise NotFoundError("Page", page_id)
            current = list(row.alternate_urls or [])
            if url not in current:
                # Reassign so the JSON column is flagged dirty
                row.alternate_urls = [*current, url]
                await session.commit()
            return _row_to_page(row)

    async def get_pages_by_job(self, job_id: str) -> list[PageRecord]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(PageRow).where(PageRow.job_id == job_id).order_by(PageRow.extracted_at)
            )
            return [_row_to_page(row) for row in result.scalars().all()]

    async def close(self) -> None:
        await self.engine.dispose()
