"""Tests for the page stores."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from rendercrawl.config import EXPECTED_SCHEMA_VERSION
from rendercrawl.crawler.storage import MemoryPageStore, NotFoundError, PageStore, SQLPageStore
from rendercrawl.database import create_engine_for
from rendercrawl.exceptions import StorageSchemaError
from rendercrawl.models import JobStatus, PageRow

TARGET = "https://docs.example.com/api"


@pytest.fixture(params=["memory", "sql"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[PageStore, None]:
    """Run each test against both store implementations."""
    if request.param == "memory":
        yield MemoryPageStore()
        return

    sql_store = SQLPageStore(create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'pages.db'}"))
    await sql_store.create_schema()
    yield sql_store
    await sql_store.close()


class TestJobs:
    """Tests for job records."""

    @pytest.mark.asyncio
    async def test_create_and_update(self, store: PageStore) -> None:
        """Test a job starts pending and accepts progress updates."""
        job_id = await store.create_job(["http://docs.example.com/api/"], [TARGET])

        job = await store.get_job(job_id)
        assert job is not None
        assert job.status == JobStatus.PENDING.value
        assert job.targets == ["http://docs.example.com/api/"]
        assert job.canonical_targets == [TARGET]

        errors = [{"url": f"{TARGET}/x", "canonical_url": f"{TARGET}/x", "error": "RenderError: boom"}]
        await store.update_job(job_id, status=JobStatus.IN_PROGRESS.value, pages_processed=3, errors=errors)

        job = await store.get_job(job_id)
        assert job is not None
        assert job.status == JobStatus.IN_PROGRESS.value
        assert job.pages_processed == 3
        assert job.errors == errors

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store: PageStore) -> None:
        """Test only progress fields can be updated."""
        job_id = await store.create_job([TARGET], [TARGET])
        with pytest.raises(ValueError, match="Unknown job fields"):
            await store.update_job(job_id, targets=["https://evil.example.com"])

    @pytest.mark.asyncio
    async def test_missing_job(self, store: PageStore) -> None:
        """Test unknown jobs."""
        assert await store.get_job("missing") is None
        with pytest.raises(NotFoundError):
            await store.update_job("missing", status=JobStatus.COMPLETED.value)


class TestPages:
    """Tests for page records."""

    @pytest.mark.asyncio
    async def test_save_and_lookup(self, store: PageStore) -> None:
        """Test a saved page can be found by URL and by hash."""
        job_id = await store.create_job([TARGET], [TARGET])
        page = await store.save_page(
            job_id,
            TARGET,
            "API reference",
            "<main>API reference</main>",
            "hash-1",
            metadata={"title": "API"},
        )

        assert page.alternate_urls == [TARGET]
        assert page.content_length == len("API reference")

        by_url = await store.get_page_by_canonical_url(TARGET)
        assert by_url is not None
        assert by_url.id == page.id
        assert by_url.metadata == {"title": "API"}
        assert by_url.html == "<main>API reference</main>"

        by_hash = await store.get_page_by_content_hash(job_id, "hash-1")
        assert by_hash is not None
        assert by_hash.id == page.id
        assert await store.get_page_by_content_hash(job_id, "hash-2") is None

    @pytest.mark.asyncio
    async def test_same_url_in_two_jobs(self, store: PageStore) -> None:
        """Test the current schema allows a URL to be stored once per job."""
        first = await store.create_job([TARGET], [TARGET])
        second = await store.create_job([TARGET], [TARGET])

        await store.save_page(first, TARGET, "body", None, "h")
        await store.save_page(second, TARGET, "body", None, "h")

        assert len(await store.get_pages_by_job(first)) == 1
        assert len(await store.get_pages_by_job(second)) == 1

    @pytest.mark.asyncio
    async def test_append_alternate_url(self, store: PageStore) -> None:
        """Test alternate URLs are appended once, in order."""
        job_id = await store.create_job([TARGET], [TARGET])
        page = await store.save_page(job_id, f"{TARGET}/a", "body", None, "h")

        await store.append_alternate_url(page.id, f"{TARGET}/b")
        updated = await store.append_alternate_url(page.id, f"{TARGET}/b")

        assert updated.alternate_urls == [f"{TARGET}/a", f"{TARGET}/b"]
        stored = await store.get_page_by_content_hash(job_id, "h")
        assert stored is not None
        assert stored.alternate_urls == [f"{TARGET}/a", f"{TARGET}/b"]

    @pytest.mark.asyncio
    async def test_append_to_missing_page(self, store: PageStore) -> None:
        """Test unknown pages."""
        with pytest.raises(NotFoundError):
            await store.append_alternate_url("missing", f"{TARGET}/b")

    @pytest.mark.asyncio
    async def test_current_schema_version(self, store: PageStore) -> None:
        """Test fresh stores report the expected version."""
        assert await store.get_schema_version() == EXPECTED_SCHEMA_VERSION


class TestLegacySchema:
    """Tests for databases created by older versions."""

    @pytest.mark.asyncio
    async def test_existing_pages_table_reports_v1(self, tmp_path: Path) -> None:
        """Test a database that predates version stamping is reported as v1."""
        engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(PageRow.__table__.create)

        store = SQLPageStore(engine)
        await store.create_schema()
        try:
            assert await store.get_schema_version() == 1
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unique_url_constraint_raises_schema_error(self, sql_store: SQLPageStore) -> None:
        """Test a one-page-per-URL constraint surfaces as StorageSchemaError."""
        async with sql_store.engine.begin() as conn:
            await conn.exec_driver_sql("CREATE UNIQUE INDEX ux_pages_canonical_url ON pages (canonical_url)")
            await conn.exec_driver_sql("DELETE FROM schema_info")

        first = await sql_store.create_job([TARGET], [TARGET])
        second = await sql_store.create_job([TARGET], [TARGET])
        await sql_store.save_page(first, TARGET, "body", None, "h")

        with pytest.raises(StorageSchemaError) as exc_info:
            await sql_store.save_page(second, TARGET, "body", None, "h")

        assert exc_info.value.details["current_version"] == 1
        assert "drop" in exc_info.value.guidance
