"""
Background poll scheduler.

Triggers a scheduled poll after a short start-up delay and then on a
fixed interval. A tick that finds a run already in flight is skipped.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from nphies_poll.db.models.enums import TriggerType
from nphies_poll.errors import PollAlreadyRunningError
from nphies_poll.exchange.config import PollerConfig
from nphies_poll.polling.orchestrator import PollOrchestrator, get_orchestrator
from nphies_poll.polling.schemas import SchedulerStatus

logger = structlog.get_logger(__name__)


class PollScheduler:
    """Runs `orchestrator.trigger(SCHEDULED)` on an interval."""

    def __init__(self, orchestrator: PollOrchestrator, config: Optional[PollerConfig] = None):
        self.orchestrator = orchestrator
        self.config = config or orchestrator.config
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._next_run_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduling loop in the background."""
        if self._running:
            logger.warning("scheduler.already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "scheduler.started",
            interval_minutes=self.config.poll_interval_minutes,
            initial_delay_seconds=self.config.initial_delay_seconds,
        )

    async def stop(self):
        """Stop the loop. A run already in flight finishes unless the orchestrator cancels it."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._next_run_at = None
        logger.info("scheduler.stopped")

    def _schedule_in(self, seconds: float) -> float:
        self._next_run_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        return seconds

    async def _loop(self):
        await asyncio.sleep(self._schedule_in(self.config.initial_delay_seconds))
        while self._running:
            await self.tick()
            await asyncio.sleep(self._schedule_in(self.config.get_poll_interval_seconds()))

    async def tick(self) -> None:
        """Run one scheduled poll, skipping it if a run is already in flight."""
        try:
            result = await self.orchestrator.trigger(TriggerType.SCHEDULED)
            logger.info(
                "scheduler.poll_finished",
                status=result.status.value,
                received=result.stats.received,
            )
        except PollAlreadyRunningError as exc:
            logger.info("scheduler.tick_skipped", reason="poll already running", poll_log_id=exc.poll_log_id)
        except Exception as exc:
            logger.error("scheduler.tick_failed", error=str(exc), error_type=type(exc).__name__)

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            poll_in_progress=self.orchestrator.is_running,
            interval_minutes=self.config.poll_interval_minutes,
            next_run_at=self._next_run_at,
        )


# Global scheduler instance
_scheduler_instance: Optional[PollScheduler] = None


def get_scheduler() -> PollScheduler:
    """
    Get or create the global scheduler, bound to the global orchestrator.

    Returns:
        PollScheduler singleton
    """
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = PollScheduler(get_orchestrator())
    return _scheduler_instance


def set_scheduler(scheduler: Optional[PollScheduler]) -> None:
    global _scheduler_instance
    _scheduler_instance = scheduler
