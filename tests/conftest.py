"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

# Set test environment before any app code runs
os.environ["RENDERCRAWL_ENV"] = "test"
os.environ["RENDERCRAWL_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from rendercrawl.config import get_settings  # noqa: E402
from rendercrawl.crawler.diagnostics import ErrorLogger  # noqa: E402
from rendercrawl.crawler.storage import MemoryPageStore, SQLPageStore  # noqa: E402
from rendercrawl.database import create_engine_for  # noqa: E402
from tests.fixtures.fakes import FakeRenderer  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    """Use test env values, not stale cached settings."""
    get_settings.cache_clear()


@pytest.fixture
def memory_store() -> MemoryPageStore:
    return MemoryPageStore()


@pytest.fixture
async def sql_store(tmp_path: Path) -> AsyncGenerator[SQLPageStore, None]:
    """SQLite-backed page store in a temporary file."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'pages.db'}")
    store = SQLPageStore(engine)
    await store.create_schema()
    yield store
    await store.close()


@pytest.fixture
def error_logger() -> ErrorLogger:
    return ErrorLogger(max_entries=100)


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()
