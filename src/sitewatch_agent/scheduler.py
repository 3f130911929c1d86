"""Background trigger for silent periodic checks."""

import asyncio
import logging
import os
import time
from typing import Callable

from sitewatch_agent.checker import CheckOrchestrator, RunSummary
from sitewatch_agent.models import Session
from sitewatch_agent.store import AdapterError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60  # how often to look at the clock
DEFAULT_MIN_RUN_INTERVAL = 300  # minimum gap between completed runs


class CheckScheduler:
    """Starts a silent check run once enough time has passed since the last one.

    The next eligible time moves forward when the orchestrator completes a
    run, whichever trigger started it, and when a silent run is aborted.
    """

    def __init__(
        self,
        orchestrator: CheckOrchestrator,
        session: Session,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        min_run_interval: float = DEFAULT_MIN_RUN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._orchestrator = orchestrator
        self._session = session
        self.poll_interval = poll_interval
        self.min_run_interval = min_run_interval
        self._clock = clock
        self._next_eligible_at = clock()
        orchestrator.add_completion_listener(self._on_run_completed)

    @property
    def next_eligible_at(self) -> float:
        return self._next_eligible_at

    def is_due(self) -> bool:
        return self._clock() >= self._next_eligible_at

    def _on_run_completed(self, summary: RunSummary) -> None:
        self._next_eligible_at = self._clock() + self.min_run_interval

    async def tick(self) -> RunSummary | None:
        """Start a silent run if one is due. Returns its summary, if any."""
        if not self.is_due():
            return None
        try:
            return await self._orchestrator.run(self._session, silent=True)
        except AdapterError:
            # Back off as if the run had completed
            self._next_eligible_at = self._clock() + self.min_run_interval
            raise

    async def run_forever(self) -> None:
        """Poll until cancelled."""
        logger.info(
            "Scheduler started (poll: %ss, min interval: %ss)",
            self.poll_interval, self.min_run_interval,
        )
        while True:
            try:
                summary = await self.tick()
                if summary and summary.changed > 0:
                    logger.info("Background check: %d websites changed", summary.changed)
            except Exception as e:
                logger.error("Background check failed: %s", e)

            await asyncio.sleep(self.poll_interval)


async def start_polling(orchestrator: CheckOrchestrator, session: Session) -> None:
    """Run the periodic trigger with intervals taken from the environment."""
    scheduler = CheckScheduler(
        orchestrator,
        session,
        poll_interval=float(os.environ.get("SITEWATCH_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
        min_run_interval=float(os.environ.get("SITEWATCH_MIN_RUN_INTERVAL", DEFAULT_MIN_RUN_INTERVAL)),
    )
    await scheduler.run_forever()
