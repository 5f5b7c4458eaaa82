"""Interval scheduler: fire one pipeline run per tick.

Every ``interval_s`` seconds a new run is started as its own asyncio task.
There is no overlap guard: a run that outlasts the interval keeps going while
the next one starts, sharing the credential provider and change detector.

The run boundary is where failures stop. Any exception escaping a run is
logged and converted into an aborted RunOutcome; the only recovery is the
next tick. Every outcome is handed to the registered listeners, which is the
hook for metrics and alerting. Consecutive failed runs are counted and logged
at ERROR once ``failure_alert_threshold`` is reached.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from phiscan.core.errors import AuthenticationFailure
from phiscan.pipeline.dag import RunOutcome

logger = logging.getLogger(__name__)

OutcomeListener = Callable[[RunOutcome], None]


class Scheduler:
    """Timer-driven runner for pipeline runs.

    Usage::

        scheduler = Scheduler(pipeline.run, interval_s=60)
        task = asyncio.create_task(scheduler.run_forever())
        ...
        task.cancel()
        await scheduler.stop()
    """

    def __init__(
        self,
        run: Callable[[], Awaitable[RunOutcome]],
        interval_s: float,
        *,
        listeners: list[OutcomeListener] | None = None,
        failure_alert_threshold: int = 5,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._run = run
        self.interval_s = interval_s
        self.failure_alert_threshold = failure_alert_threshold
        self._listeners: list[OutcomeListener] = list(listeners or [])
        self._in_flight: set[asyncio.Task] = set()
        self.ticks = 0
        self.consecutive_failures = 0
        self.last_outcome: RunOutcome | None = None

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def tick(self) -> RunOutcome:
        """Execute one run and return its (possibly aborted) outcome. Never raises."""
        self.ticks += 1
        tick = self.ticks
        logger.info("Scan run %d started", tick)

        try:
            outcome = await self._run()
        except AuthenticationFailure as exc:
            logger.error("Scan run %d aborted: %s", tick, exc)
            outcome = RunOutcome.aborted(exc)
        except Exception as exc:
            logger.exception("Scan run %d failed", tick)
            outcome = RunOutcome.aborted(exc)

        if outcome.ok:
            self.consecutive_failures = 0
            logger.info("Scan run %d finished: %s", tick, outcome.summary())
        else:
            self.consecutive_failures += 1
            logger.warning("Scan run %d finished with failures: %s", tick, outcome.summary())
            if self.consecutive_failures >= self.failure_alert_threshold:
                logger.error("%d consecutive scan runs have failed", self.consecutive_failures)

        self.last_outcome = outcome
        self._notify(outcome)
        return outcome

    def fire(self) -> asyncio.Task:
        """Start a run in the background and return its task."""
        task = asyncio.create_task(self.tick())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def run_forever(self) -> None:
        logger.info("Scheduler started: one scan run every %.1fs", self.interval_s)
        while True:
            self.fire()
            await asyncio.sleep(self.interval_s)

    async def stop(self) -> None:
        """Cancel every in-flight run and wait for them to unwind."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _notify(self, outcome: RunOutcome) -> None:
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.exception("Run outcome listener %r failed", listener)
