"""Diagnostic error log for crawl failures."""

import traceback
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from rendercrawl import __version__

logger = structlog.get_logger(__name__)


@dataclass
class ErrorEntry:
    """A logged error with the context it happened in."""

    source: str
    message: str
    error_type: str | None
    stack: str | None
    context: dict[str, Any]
    version: str = __version__
    logged_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ErrorLogger:
    """
    Bounded, in-process error log.

    ``log_error`` is fire-and-forget: it never raises into the caller, even
    when the optional sink fails.
    """

    def __init__(
        self,
        max_entries: int = 500,
        sink: Callable[[ErrorEntry], None] | None = None,
    ):
        self._entries: deque[ErrorEntry] = deque(maxlen=max_entries)
        self._sink = sink

    def log_error(
        self,
        source: str,
        error: BaseException | str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record an error from ``source`` (e.g. ``"crawler"``, ``"renderer"``)."""
        try:
            if isinstance(error, BaseException):
                message = str(error) or type(error).__name__
                error_type = type(error).__name__
                stack = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            else:
                message, error_type, stack = str(error), None, None

            entry = ErrorEntry(
                source=source,
                message=message,
                error_type=error_type,
                stack=stack,
                context={**(context or {}), "timestamp": datetime.now(UTC).isoformat()},
            )
            self._entries.append(entry)
            logger.info("error_logged", source=source, message=message, context=context or {})

            if self._sink is not None:
                self._sink(entry)
        except Exception as e:
            logger.warning("error_log_failed", source=source, error=str(e))

    def get_errors(self) -> list[ErrorEntry]:
        """Logged entries, oldest first."""
        return list(self._entries)

    def count(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup_older_than(self, max_age: timedelta) -> int:
        """Drop entries older than ``max_age``; returns how many were removed."""
        cutoff = datetime.now(UTC) - max_age
        kept = [entry for entry in self._entries if entry.logged_at >= cutoff]
        removed = len(self._entries) - len(kept)
        self._entries.clear()
        self._entries.extend(kept)
        return removed
