"""Renderer capability: what the crawl engine needs from a browser.

The engine never talks to a browser API directly. A renderer hands out
sessions (one tab each); a session can navigate, run small probes inside
the rendered page and extract its content. ``browser.py`` implements this
on top of Playwright; tests use scripted fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Probe(StrEnum):
    """Measurements a session can take inside the rendered page."""

    RESOURCE_COUNT = "resource_count"  # resources loaded so far (int)
    MUTATION_COUNT = "mutation_count"  # DOM mutations observed since navigation (int)
    CONTENT_LENGTH = "content_length"  # visible text length of the main region (int)
    SELECTORS_PRESENT = "selectors_present"  # args: selectors; returns those present (list[str])
    SPOOF_VISIBILITY = "spoof_visibility"  # force visibilityState=visible and fire focus events


@dataclass
class RenderedPage:
    """Everything extracted from one rendered page."""

    url: str
    html: str
    text: str
    links: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    markdown: str | None = None
    markdown_meta: dict[str, Any] | None = None


@dataclass
class RenderOptions:
    """Per-fetch rendering options."""

    timeout: float = 30.0  # seconds, one deadline for the whole fetch
    wait_for_selectors: list[str] = field(default_factory=list)
    isolated_context: bool = False


class RenderSession(ABC):
    """One reusable rendering context (a browser tab)."""

    @property
    @abstractmethod
    def session_id(self) -> str:
        """Stable identifier of this session."""

    @abstractmethod
    async def navigate(self, url: str, timeout: float) -> None:
        """Load ``url`` and wait for the load-complete signal.

        Raises:
            RenderTimeoutError: load did not complete within ``timeout``
            RenderError: navigation failed
        """

    @abstractmethod
    async def run_probe(self, probe: Probe, *args: Any) -> Any:
        """Run a probe in the current page.

        Raises:
            ProbeError: the probe could not run
        """

    @abstractmethod
    async def extract(self) -> RenderedPage:
        """Extract HTML, text, links and metadata from the current page.

        Raises:
            ExtractionError: extraction failed
        """

    @abstractmethod
    async def instrument(self) -> None:
        """Keep the session running at full speed while in the background.

        Raises:
            InstrumentationError: instrumentation could not be attached
        """

    @abstractmethod
    async def detach(self) -> None:
        """Remove instrumentation. Never raises."""

    @abstractmethod
    async def is_alive(self) -> bool:
        """Whether the session can still be used."""

    @abstractmethod
    async def close(self) -> None:
        """Destroy the session. Never raises."""


class Renderer(ABC):
    """A browser able to open rendering sessions."""

    @abstractmethod
    async def new_session(self, isolated: bool = False) -> RenderSession:
        """Open a new session, in the isolated browsing context if requested."""

    @abstractmethod
    async def close_isolated_context(self) -> None:
        """Close the isolated browsing context, if one was created. Never raises."""
