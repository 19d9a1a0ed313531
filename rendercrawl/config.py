"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Worker and hop bounds accepted from the CLI or any other caller
MIN_MAX_WORKERS = 1
MAX_MAX_WORKERS = 10
DEFAULT_MAX_WORKERS = 5

MIN_MAX_EXTERNAL_HOPS = 1
MAX_MAX_EXTERNAL_HOPS = 5
DEFAULT_MAX_EXTERNAL_HOPS = 1

# Schema version the crawler writes and expects from the page store
EXPECTED_SCHEMA_VERSION = 2


class Settings(BaseSettings):
    """Process-wide settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RENDERCRAWL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: Literal["development", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    database_url: str = "sqlite+aiosqlite:///rendercrawl.db"

    # Crawl defaults
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=MIN_MAX_WORKERS, le=MAX_MAX_WORKERS)
    max_external_hops: int = Field(
        default=DEFAULT_MAX_EXTERNAL_HOPS, ge=MIN_MAX_EXTERNAL_HOPS, le=MAX_MAX_EXTERNAL_HOPS
    )
    request_timeout: float = 30.0  # seconds, shared by acquire + navigate + readiness + extract
    request_delay: float = 0.5  # seconds between two URLs on the same worker
    strict_path_matching: bool = True

    # Browser
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: str | None = None  # None keeps the browser's own user agent

    # Sitemap discovery
    sitemap_fetch_timeout: float = 10.0
    sitemap_nested_timeout: float = 5.0
    sitemap_total_timeout: float = 30.0
    sitemap_max_depth: int = 2

    # Diagnostics
    diagnostics_max_entries: int = 500

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.env == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
