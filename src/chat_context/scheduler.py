"""
Scheduler - periodic retention cleanup of expired sessions.

Runs ``cleanup_expired_sessions`` on a cron schedule in a background task,
independent of request-serving paths.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Coroutine, Optional

from croniter import croniter

logger = logging.getLogger(__name__)

CleanupJob = Callable[[], Coroutine[Any, Any, int]]


class CleanupScheduler:
    """
    Cron-driven runner for the session cleanup job.

    Features:
    - Cron expression for the run schedule (daily by default)
    - Errors in one run are logged and never stop the loop
    - Start/stop from a running event loop
    """

    def __init__(
        self,
        job: CleanupJob,
        cron_expression: str = "0 3 * * *",
        poll_seconds: float = 30,
    ):
        if not croniter.is_valid(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")
        self.job = job
        self.cron_expression = cron_expression
        self.poll_seconds = poll_seconds
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[int] = None
        self.next_run: Optional[datetime] = self._calculate_next_run()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _calculate_next_run(self, base: Optional[datetime] = None) -> datetime:
        """Calculate the next run time based on the cron expression."""
        cron = croniter(self.cron_expression, base or datetime.now())
        return cron.get_next(datetime)

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """Check if the job is due."""
        now = now or datetime.now()
        return self.next_run is not None and now >= self.next_run

    async def run_once(self) -> Optional[int]:
        """Run the job now and schedule the next run."""
        logger.info("Running session cleanup")
        try:
            self.last_result = await self.job()
            logger.info(f"Session cleanup removed {self.last_result} sessions")
        except Exception as e:
            self.last_result = None
            logger.error(f"Error in session cleanup: {e}")

        self.last_run = datetime.now()
        self.next_run = self._calculate_next_run(self.last_run)
        return self.last_result

    async def _run_loop(self):
        """Main scheduler loop."""
        while self._running:
            try:
                if self.should_run():
                    await self.run_once()

                await asyncio.sleep(self.poll_seconds)

            except asyncio.CancelledError:
                break

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Cleanup scheduler started ({self.cron_expression}), next run at {self.next_run}")

    def stop(self):
        """Stop the scheduler."""
        self._running = False
        if self._task:
            self._task.cancel()
        logger.info("Cleanup scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
