"""Pool of reusable rendering sessions."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from rendercrawl.crawler.renderer import Renderer, RenderSession
from rendercrawl.exceptions import InstrumentationError

logger = structlog.get_logger(__name__)


@dataclass
class PooledSession:
    """Pool bookkeeping for one session."""

    session: RenderSession
    isolated: bool
    in_use: bool = False
    instrumented: bool = False


class RendererPool:
    """
    Multiplexes fetches over a small set of long-lived sessions.

    A session is held by at most one worker at a time. Released sessions are
    kept for reuse so the instrumentation step runs once per session; dead
    sessions are pruned and replaced on acquire. Everything is destroyed by
    :meth:`teardown_all`.
    """

    def __init__(self, renderer: Renderer):
        self.renderer = renderer
        self._entries: list[PooledSession] = []
        self._lock = asyncio.Lock()

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def in_use_count(self) -> int:
        return sum(1 for entry in self._entries if entry.in_use)

    async def acquire(self, isolated: bool = False) -> RenderSession:
        """
        Claim a free session, creating and instrumenting one if needed.

        Args:
            isolated: Use a session from the isolated browsing context

        Returns:
            A session now owned by the caller until :meth:`release`

        Raises:
            InstrumentationError: a new session could not be instrumented
        """
        async with self._lock:
            for entry in list(self._entries):
                if entry.in_use or entry.isolated != isolated:
                    continue
                if await entry.session.is_alive():
                    entry.in_use = True
                    logger.debug("session_reused", session_id=entry.session.session_id)
                    return entry.session

                logger.info("session_pruned", session_id=entry.session.session_id)
                self._entries.remove(entry)
                await entry.session.close()

            session = await self.renderer.new_session(isolated=isolated)
            entry = PooledSession(session=session, isolated=isolated, in_use=True)
            try:
                await session.instrument()
            except InstrumentationError:
                await session.close()
                raise
            entry.instrumented = True
            self._entries.append(entry)

            logger.info(
                "session_created",
                session_id=session.session_id,
                isolated=isolated,
                pool_size=len(self._entries),
            )
            return session

    def release(self, session: RenderSession) -> None:
        """Return a session to the pool. Never destroys it."""
        for entry in self._entries:
            if entry.session is session:
                entry.in_use = False
                return
        logger.warning("release_unknown_session", session_id=session.session_id)

    @asynccontextmanager
    async def session(self, isolated: bool = False) -> AsyncIterator[RenderSession]:
        """Acquire a session for the duration of a ``with`` block."""
        session = await self.acquire(isolated=isolated)
        try:
            yield session
        finally:
            self.release(session)

    async def teardown_all(self) -> None:
        """Detach and close every session and the isolated context. Idempotent."""
        async with self._lock:
            entries, self._entries = self._entries, []
            for entry in entries:
                await self._destroy(entry)
            await self.renderer.close_isolated_context()

        if entries:
            logger.info("pool_torn_down", sessions=len(entries))

    async def _destroy(self, entry: PooledSession) -> None:
        # One broken session must not leave the others open
        session = entry.session
        steps = [session.detach, session.close] if entry.instrumented else [session.close]
        for step in steps:
            try:
                await step()
            except Exception as e:
                logger.warning(
                    "session_teardown_failed",
                    session_id=session.session_id,
                    step=step.__name__,
                    error=str(e),
                )
