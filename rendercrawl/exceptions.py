"""Custom exceptions and error formatting."""

from typing import Any


class RenderCrawlError(Exception):
    """Base exception for rendercrawl."""

    def __init__(
        self,
        message: str,
        code: str = "error",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class InvalidTargetError(RenderCrawlError):
    """No usable crawl target was supplied."""

    def __init__(self, targets: list[str]):
        super().__init__(
            message=f"No valid target URL in {targets!r}",
            code="invalid_target",
            details={"targets": targets},
        )


class RenderError(RenderCrawlError):
    """Rendering a URL failed. Fatal for that URL, never for the job."""

    def __init__(self, message: str, url: str | None = None, code: str = "render_error"):
        details = {"url": url} if url else {}
        super().__init__(message=message, code=code, details=details)
        self.url = url


class RenderTimeoutError(RenderError):
    """Navigation or the overall fetch deadline expired."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message, url=url, code="render_timeout")


class InstrumentationError(RenderError):
    """The throttling-bypass instrumentation could not be attached."""

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message, code="instrumentation_error")
        self.details["session_id"] = session_id


class ExtractionError(RenderError):
    """Content could not be extracted from a rendered page."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message, url=url, code="extraction_error")


class ProbeError(RenderCrawlError):
    """A readiness probe failed inside the page."""

    def __init__(self, probe: str, message: str):
        super().__init__(
            message=f"{probe}: {message}",
            code="probe_error",
            details={"probe": probe},
        )


class StorageSchemaError(RenderCrawlError):
    """The page store is on an older schema than the crawler expects."""

    GUIDANCE = (
        "The page store still enforces one page per canonical URL (schema v1), "
        "so a URL cannot be crawled again by a new job. Back up the database, "
        "drop it (or delete the SQLite file) and start the crawl again; tables "
        "are recreated on the current schema automatically."
    )

    def __init__(self, message: str, current_version: int | None = None):
        super().__init__(
            message=message,
            code="storage_schema_error",
            details={"current_version": current_version, "guidance": self.GUIDANCE},
        )

    @property
    def guidance(self) -> str:
        return self.GUIDANCE


class CrawlAlreadyActiveError(RenderCrawlError):
    """A crawl job is already running in this process."""

    def __init__(self, job_id: str | None = None):
        super().__init__(
            message="A crawl is already in progress",
            code="crawl_already_active",
            details={"job_id": job_id},
        )


def format_error(error: BaseException | str | None) -> str:
    """Render an error as ``"<Name>: <message>"`` for storage and display."""
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    message = str(error)
    if message:
        return f"{type(error).__name__}: {message}"
    return type(error).__name__
