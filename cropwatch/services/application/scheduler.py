"""
Application service: daily trigger for the batch run.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo
import asyncio
import logging

from cropwatch.services.application.batch_orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


def next_run_time(now: datetime, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """
    Next occurrence of hour:minute in the given timezone, strictly after now.

    Args:
        now: Current time (timezone-aware)
        hour: Local hour of the daily run
        minute: Local minute of the daily run
        tz: Timezone the schedule is expressed in

    Returns:
        Timezone-aware datetime in tz
    """
    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = (candidate + timedelta(days=1)).replace(hour=hour, minute=minute)
    return candidate


class DailyScheduler:
    """
    Fires the orchestrator once a day at a fixed local time.

    Overlapping triggers are harmless: the orchestrator ignores a start
    while a run is in progress.
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        hour: int = 6,
        minute: int = 0,
        timezone_name: str = "America/Sao_Paulo",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.orchestrator = orchestrator
        self.hour = hour
        self.minute = minute
        self.tz = ZoneInfo(timezone_name)
        self.sleep = sleep
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="daily-analysis-scheduler")
        logger.info(
            f"Daily analysis scheduled at {self.hour:02d}:{self.minute:02d} ({self.tz.key})"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Daily analysis scheduler stopped")

    async def tick(self) -> None:
        """Wait for the next scheduled time, then trigger one run."""
        now = self.clock()
        fire_at = next_run_time(now, self.hour, self.minute, self.tz)
        delay = (fire_at - now).total_seconds()
        logger.debug(f"Next analysis run at {fire_at.isoformat()} (in {delay:.0f}s)")
        await self.sleep(delay)

        logger.info("Scheduled trigger fired, starting daily analysis")
        await self.orchestrator.run()

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Scheduled analysis run raised: {e}")
