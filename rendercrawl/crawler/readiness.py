"""Content readiness detection for rendered pages.

Decides when a freshly navigated page is safe to extract from by combining
three signals, each polled against its own deadline:

1. Network idle: the loaded-resource count stops changing.
2. DOM stability: the mutation counter stops changing.
3. Content plateau: the visible text length of the main region stops growing.

Signals 1 and 2 run concurrently; 3 runs afterwards with whatever budget is
left. A signal that fails or times out never fails the fetch: detection
degrades to "extract now" and the hard deadline always wins.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from rendercrawl.crawler.renderer import Probe, RenderSession
from rendercrawl.exceptions import ProbeError

logger = structlog.get_logger(__name__)


class ReadinessState(StrEnum):
    """States of one readiness run."""

    LOADING = "loading"
    SETTLING = "settling"  # waiting for network idle and DOM stability
    CONTENT_PLATEAU = "content_plateau"
    READY = "ready"


@dataclass
class ReadinessConfig:
    """Timing constants, in seconds."""

    network_idle_wait: float = 0.5
    dom_stable_wait: float = 1.0
    content_plateau_wait: float = 1.0
    content_check_interval: float = 0.2
    min_content_length: int = 200
    phase_cap: float = 10.0
    poll_interval: float = 0.1
    selector_poll_interval: float = 0.1


@dataclass
class SignalResult:
    """Outcome of one readiness signal."""

    name: str
    reached: bool
    reason: str
    value: int | None = None
    checks: int = 0


@dataclass
class ReadinessResult:
    """Outcome of a full readiness run."""

    state: ReadinessState
    network: SignalResult
    dom: SignalResult
    content: SignalResult
    elapsed: float
    states: list[ReadinessState] = field(default_factory=list)

    @property
    def fully_ready(self) -> bool:
        """True when every signal settled before its deadline."""
        return self.network.reached and self.dom.reached and self.content.reached

    @property
    def content_length(self) -> int:
        return self.content.value or 0


def _timed_out(name: str) -> SignalResult:
    return SignalResult(name=name, reached=False, reason="timeout")


class ReadinessDetector:
    """Runs the readiness state machine against one render session."""

    def __init__(
        self,
        config: ReadinessConfig | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config or ReadinessConfig()
        self._clock = clock

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    async def wait_until_ready(self, session: RenderSession, timeout: float) -> ReadinessResult:
        """
        Wait until the page in ``session`` is safe to extract from.

        Never raises for signal failures and never runs past ``timeout``.

        Args:
            session: Session whose page has finished loading
            timeout: Hard deadline for the whole detection, in seconds

        Returns:
            ReadinessResult, always in the READY state
        """
        cfg = self.config
        start = self._now()
        hard_deadline = start + timeout
        states = [ReadinessState.LOADING, ReadinessState.SETTLING]

        # Phase 1: network idle and DOM stability, concurrently
        settle_budget = max(min(timeout, cfg.phase_cap), 0.0)
        settle_deadline = start + settle_budget
        network_task = asyncio.create_task(
            self._wait_for_stable_count(
                session,
                Probe.RESOURCE_COUNT,
                "network_idle",
                cfg.network_idle_wait,
                settle_deadline,
            )
        )
        dom_task = asyncio.create_task(
            self._wait_for_stable_count(
                session,
                Probe.MUTATION_COUNT,
                "dom_stable",
                cfg.dom_stable_wait,
                settle_deadline,
            )
        )
        tasks = [network_task, dom_task]
        try:
            await asyncio.wait(tasks, timeout=settle_budget)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        network = self._signal_outcome(network_task, "network_idle")
        dom = self._signal_outcome(dom_task, "dom_stable")

        # Phase 2: content plateau with the remaining budget
        states.append(ReadinessState.CONTENT_PLATEAU)
        plateau_budget = min(max(hard_deadline - self._now(), 0.0), cfg.phase_cap)
        if plateau_budget > 0:
            try:
                content = await asyncio.wait_for(
                    self._wait_for_content_plateau(session, self._now() + plateau_budget),
                    timeout=plateau_budget,
                )
            except TimeoutError:
                content = _timed_out("content_plateau")
        else:
            content = SignalResult(name="content_plateau", reached=False, reason="no_budget")

        states.append(ReadinessState.READY)
        result = ReadinessResult(
            state=ReadinessState.READY,
            network=network,
            dom=dom,
            content=content,
            elapsed=self._now() - start,
            states=states,
        )
        logger.debug(
            "content_ready",
            elapsed_ms=int(result.elapsed * 1000),
            network=network.reason,
            dom=dom.reason,
            content=content.reason,
            content_length=result.content_length,
        )
        return result

    async def wait_for_selectors(
        self,
        session: RenderSession,
        selectors: list[str],
        timeout: float,
    ) -> list[str]:
        """
        Wait for every selector to match something in the page.

        Failure is non-fatal: on timeout or probe error the selectors seen so
        far are returned.
        """
        if not selectors:
            return []

        deadline = self._now() + timeout
        found: list[str] = []
        while True:
            try:
                present = await session.run_probe(Probe.SELECTORS_PRESENT, list(selectors))
            except ProbeError as e:
                logger.warning("selector_wait_failed", error=str(e))
                return found

            for selector in present or []:
                if selector in selectors and selector not in found:
                    found.append(selector)
            if len(found) == len(selectors):
                return found

            now = self._now()
            if now >= deadline:
                logger.debug("selector_wait_timeout", found=found, wanted=selectors)
                return found
            await asyncio.sleep(min(self.config.selector_poll_interval, deadline - now))

    @staticmethod
    def _signal_outcome(task: "asyncio.Task[SignalResult]", name: str) -> SignalResult:
        if task.cancelled() or not task.done():
            return _timed_out(name)
        return task.result()

    async def _probe_int(self, session: RenderSession, probe: Probe) -> int:
        value: Any = await session.run_probe(probe)
        return int(value or 0)

    async def _wait_for_stable_count(
        self,
        session: RenderSession,
        probe: Probe,
        name: str,
        quiet_period: float,
        deadline: float,
    ) -> SignalResult:
        """Poll a counter until it has not changed for ``quiet_period``."""
        checks = 0
        try:
            last = await self._probe_int(session, probe)
            checks += 1
            stable_since = self._now()
            while True:
                now = self._now()
                if now - stable_since >= quiet_period:
                    return SignalResult(name=name, reached=True, reason="stable", value=last, checks=checks)
                if now >= deadline:
                    return SignalResult(name=name, reached=False, reason="timeout", value=last, checks=checks)

                await asyncio.sleep(min(self.config.poll_interval, deadline - now))
                current = await self._probe_int(session, probe)
                checks += 1
                if current != last:
                    last = current
                    stable_since = self._now()
        except ProbeError as e:
            logger.warning("readiness_signal_failed", signal=name, error=str(e))
            return SignalResult(name=name, reached=False, reason="error", checks=checks)

    async def _wait_for_content_plateau(self, session: RenderSession, deadline: float) -> SignalResult:
        """Sample text length until it stops growing (or stays put above the minimum)."""
        cfg = self.config
        name = "content_plateau"
        last = 0
        stable_since: float | None = None
        reason = "plateau"
        checks = 0
        try:
            while True:
                current = await self._probe_int(session, Probe.CONTENT_LENGTH)
                checks += 1
                now = self._now()
                if current != last:
                    last = current
                    stable_since = now
                    reason = "plateau"
                elif stable_since is None and current >= cfg.min_content_length:
                    stable_since = now
                    reason = "plateau_with_content"

                if stable_since is not None and now - stable_since >= cfg.content_plateau_wait:
                    return SignalResult(name=name, reached=True, reason=reason, value=last, checks=checks)
                if now >= deadline:
                    return SignalResult(name=name, reached=False, reason="timeout", value=last, checks=checks)

                await asyncio.sleep(min(cfg.content_check_interval, deadline - now))
        except ProbeError as e:
            logger.warning("readiness_signal_failed", signal=name, error=str(e))
            return SignalResult(name=name, reached=False, reason="error", value=last, checks=checks)
