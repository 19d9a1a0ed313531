"""Test fixtures: scripted renderer fakes."""

from tests.fixtures.fakes import (
    FAST_READINESS,
    FakePage,
    FakeRenderer,
    FakeSession,
    fast_crawl_config,
    make_fetcher,
)

__all__ = [
    "FAST_READINESS",
    "FakePage",
    "FakeRenderer",
    "FakeSession",
    "fast_crawl_config",
    "make_fetcher",
]
