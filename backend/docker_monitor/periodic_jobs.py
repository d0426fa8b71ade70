"""
Periodic Jobs Module for the image updater
Fires a reconciliation pass on a cron schedule
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from croniter import croniter

from updates.reconciler import ReconciliationPass

logger = logging.getLogger(__name__)


class PeriodicJobsManager:
    """Runs ReconciliationPass.run_once() at every cron tick"""

    def __init__(
        self,
        reconciler: ReconciliationPass,
        cron_expression: str = '* * * * *',
        run_on_startup: bool = False
    ):
        if not croniter.is_valid(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression!r}")
        self.reconciler = reconciler
        self.cron_expression = cron_expression
        self.run_on_startup = run_on_startup
        self.passes_run = 0
        self._last_run: Optional[datetime] = None

    def next_run_time(self, now: Optional[datetime] = None) -> datetime:
        """Next fire time strictly after now (local time)"""
        base = now or datetime.now()
        return croniter(self.cron_expression, base).get_next(datetime)

    async def run_pass(self):
        """
        Run one reconciliation pass.

        Errors are logged and swallowed so the schedule keeps firing.
        """
        try:
            summary = await self.reconciler.run_once()
            self.passes_run += 1
            self._last_run = datetime.now()
            return summary
        except Exception as e:
            logger.error(f"Error in reconciliation pass: {e}", exc_info=True)
            return None

    async def run(self):
        """Scheduler loop. Returns when the task is cancelled."""
        logger.info(f"Scheduler started with cron expression '{self.cron_expression}'")

        try:
            if self.run_on_startup:
                logger.info("Running reconciliation pass on startup")
                await self.run_pass()

            while True:
                next_run = self.next_run_time()
                delay = max((next_run - datetime.now()).total_seconds(), 0)
                logger.debug(f"Next reconciliation pass at {next_run.isoformat()} (in {delay:.0f}s)")
                await asyncio.sleep(delay)
                await self.run_pass()

        except asyncio.CancelledError:
            logger.info("Scheduler stopped")
            raise
