"""
Application service: the daily batch run across all active farms.

One orchestrator instance owns the run state and the run statistics.
Farms are processed in fixed-size, order-preserving batches: the farms of a
batch run concurrently, the next batch starts only after every task of the
current one has settled and a pacing delay has elapsed. A failing farm is
recorded and counted; it never aborts its batch or the run.
"""
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence
import asyncio
import logging
import threading
import time
import traceback

from cropwatch.domain.exceptions import ReentrancyError
from cropwatch.domain.models import (
    AnalysisErrorRecord,
    Farm,
    FarmOutcome,
    FarmStatus,
    RunReport,
    RunState,
    RunStatistics,
)
from cropwatch.domain.repositories import (
    AnalysisRepository,
    FarmRepository,
    NotificationDispatcher,
    RunReportRepository,
)
from cropwatch.services.application.farm_pipeline import FarmPipeline

logger = logging.getLogger(__name__)


def partition(farms: Sequence[Farm], batch_size: int) -> list[list[Farm]]:
    """Split farms into consecutive batches of at most batch_size, keeping order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(farms[i:i + batch_size]) for i in range(0, len(farms), batch_size)]


class BatchOrchestrator:
    """
    Drives one batch run at a time.

    States: idle -> running -> completed | failed -> idle. A start request
    while running is ignored with a warning and changes nothing.
    """

    def __init__(
        self,
        pipeline: FarmPipeline,
        farm_repository: FarmRepository,
        analysis_repository: AnalysisRepository,
        report_repository: RunReportRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        batch_size: int = 5,
        inter_batch_delay_seconds: float = 30.0,
        admin_notification_enabled: bool = False,
        admin_contacts: Sequence[str] = (),
        call_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.pipeline = pipeline
        self.farm_repository = farm_repository
        self.analysis_repository = analysis_repository
        self.report_repository = report_repository
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.inter_batch_delay_seconds = inter_batch_delay_seconds
        self.admin_notification_enabled = admin_notification_enabled
        self.admin_contacts = [c.strip() for c in admin_contacts if c and c.strip()]
        self.call_timeout = call_timeout
        self.sleep = sleep
        self.clock = clock
        self.monotonic = monotonic

        self.statistics = RunStatistics()
        self.last_outcome: Optional[RunState] = None
        self.last_report: Optional[RunReport] = None
        self._state = RunState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RunState.RUNNING

    def request_stop(self) -> bool:
        """
        Ask the current run to stop before its next batch.

        Farms already in flight are allowed to finish.

        Returns:
            True if a run was in progress
        """
        if not self.is_running:
            return False
        self._stop_requested = True
        logger.warning("Stop requested, the run will end after the current batch")
        return True

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "stop_requested": self._stop_requested,
            "statistics": asdict(self.statistics),
        }

    async def run(self) -> Optional[RunReport]:
        """
        Execute one batch run over all active farms.

        Returns:
            The persisted RunReport, or None if the run was not started
            (another run in progress) or failed before processing farms
        """
        try:
            self._begin()
        except ReentrancyError as e:
            logger.warning(f"{e}, ignoring start request")
            return None

        outcome = RunState.FAILED
        try:
            report = await self._execute()
            if report is not None:
                outcome = RunState.COMPLETED
            return report
        finally:
            self._finish(outcome)

    def _begin(self) -> None:
        with self._state_lock:
            if self._state == RunState.RUNNING:
                raise ReentrancyError("Batch run already in progress")
            self._state = RunState.RUNNING
            self._stop_requested = False
            self.statistics = RunStatistics(started_at=self.clock())

    def _finish(self, outcome: RunState) -> None:
        with self._state_lock:
            self.last_outcome = outcome
            self._state = RunState.IDLE
            self._stop_requested = False

    async def _execute(self) -> Optional[RunReport]:
        started = self.monotonic()
        logger.info("Starting batch satellite analysis run")

        try:
            farms = await asyncio.wait_for(
                self.farm_repository.list_active_farms(), self.call_timeout
            )
        except Exception as e:
            logger.exception(f"Could not list active farms, aborting run: {e}")
            await self._notify_admins(self._failure_message(e))
            return None

        self.statistics.total_farms = len(farms)
        logger.info(f"{len(farms)} farms eligible for analysis")

        batches = partition(farms, self.batch_size)
        outcomes: list[FarmOutcome] = []
        stopped_early = False

        for number, batch in enumerate(batches, start=1):
            if self._stop_requested:
                stopped_early = True
                remaining = sum(len(b) for b in batches[number - 1:])
                logger.warning(f"Run stopped before batch {number}, {remaining} farms not processed")
                break

            logger.info(f"Processing batch {number}/{len(batches)} ({len(batch)} farms)")
            results = await asyncio.gather(
                *(self._run_farm(farm) for farm in batch),
                return_exceptions=True,
            )
            for farm, result in zip(batch, results):
                if isinstance(result, BaseException):
                    result = FarmOutcome(farm.id, FarmStatus.FAILED, reason=str(result))
                self._record(result)
                outcomes.append(result)

            if number < len(batches) and not self._stop_requested:
                logger.debug(f"Pausing {self.inter_batch_delay_seconds}s before next batch")
                await self.sleep(self.inter_batch_delay_seconds)

        self.statistics.duration_ms = int((self.monotonic() - started) * 1000)
        report = self._build_report(outcomes, len(batches), stopped_early)
        self.last_report = report

        await self._save_report(report)

        logger.info(
            f"Batch run complete: {self.statistics.succeeded}/{self.statistics.total_farms} succeeded, "
            f"{self.statistics.failed} failed, {self.statistics.skipped} skipped, "
            f"{self.statistics.alerts_generated} alerts, {self.statistics.duration_ms}ms"
        )

        await self._notify_admins(self._summary_message(report))
        return report

    async def _run_farm(self, farm: Farm) -> FarmOutcome:
        """Failure boundary of a single farm task."""
        try:
            return await self.pipeline.run(farm)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Farm {farm.id}: analysis failed: {message}")
            await self._save_error(farm, e, message)
            return FarmOutcome(farm.id, FarmStatus.FAILED, reason=message)

    def _record(self, outcome: FarmOutcome) -> None:
        # Only called from the run loop, once per farm
        if outcome.status == FarmStatus.SUCCEEDED:
            self.statistics.succeeded += 1
            self.statistics.alerts_generated += outcome.alerts_generated
        elif outcome.status == FarmStatus.FAILED:
            self.statistics.failed += 1
        else:
            self.statistics.skipped += 1

    async def _save_error(self, farm: Farm, error: Exception, message: str) -> None:
        record = AnalysisErrorRecord(
            farm_id=farm.id,
            message=message,
            context={
                "error_type": type(error).__name__,
                "farm_name": farm.name,
                "crop_type": farm.crop_type,
                "traceback": "".join(traceback.format_exception(error)),
            },
            created_at=self.clock(),
        )
        try:
            await asyncio.wait_for(
                self.analysis_repository.save_error(farm.id, record), self.call_timeout
            )
        except Exception as e:
            logger.error(f"Farm {farm.id}: could not save error record: {e}")

    def _build_report(
        self, outcomes: list[FarmOutcome], batch_count: int, stopped_early: bool
    ) -> RunReport:
        stats = self.statistics
        success_rate = (
            round(stats.succeeded / stats.total_farms * 100, 2) if stats.total_farms else 0.0
        )
        return RunReport(
            date=stats.started_at.date(),
            total_farms=stats.total_farms,
            succeeded=stats.succeeded,
            failed=stats.failed,
            alerts_generated=stats.alerts_generated,
            success_rate_percent=success_rate,
            execution_time_ms=stats.duration_ms,
            report_data={
                "started_at": stats.started_at.isoformat(),
                "skipped": stats.skipped,
                "batches": batch_count,
                "stopped_early": stopped_early,
                "outcomes": [
                    {
                        "farm_id": o.farm_id,
                        "status": o.status.value,
                        "alerts_generated": o.alerts_generated,
                        "reason": o.reason,
                    }
                    for o in outcomes
                ],
            },
        )

    async def _save_report(self, report: RunReport) -> None:
        try:
            await asyncio.wait_for(self.report_repository.save_report(report), self.call_timeout)
        except Exception as e:
            logger.error(f"Could not save run report for {report.date}: {e}")

    async def _notify_admins(self, message: str) -> None:
        if not self.admin_notification_enabled or self.dispatcher is None:
            return

        for contact in self.admin_contacts:
            try:
                delivered = await asyncio.wait_for(
                    self.dispatcher.send(contact, message), self.call_timeout
                )
            except Exception as e:
                logger.error(f"Admin notification to {contact} failed: {e}")
                continue
            if not delivered:
                logger.warning(f"Admin notification to {contact} was not delivered")

    @staticmethod
    def _summary_message(report: RunReport) -> str:
        minutes = round(report.execution_time_ms / 1000 / 60)
        return "\n".join([
            "Daily Analysis Report",
            "",
            f"Date: {report.date.isoformat()}",
            f"Farms analyzed: {report.succeeded}/{report.total_farms}",
            f"Success rate: {report.success_rate_percent}%",
            f"Alerts generated: {report.alerts_generated}",
            f"Duration: {minutes} min",
        ])

    def _failure_message(self, error: Exception) -> str:
        return "\n".join([
            "Daily Analysis Failed",
            "",
            "The automatic analysis could not run.",
            f"Timestamp: {self.clock().isoformat()}",
            f"Error: {error}",
            "",
            "Check the system logs for details.",
        ])
