"""Job scheduler - runs the periodic library scan on a cron schedule."""

import logging
from datetime import datetime

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gameshelf.exceptions import ScheduleConfigurationError
from gameshelf.models import JobRunResult, JobRunStatus, LibraryScanProgress, ScanStatus, ScanType
from gameshelf.services.config_service import SCHEDULE_KEYS, ConfigKeys, ConfigService
from gameshelf.services.cron import parse_cron_expression
from gameshelf.services.games import utcnow
from gameshelf.services.scan_service import LibraryScanService

logger = logging.getLogger(__name__)

LIBRARY_SCAN_JOB_ID = "library_scan"
LIBRARY_SCAN_JOB_NAME = "Library scan"


def summarize_scans(results: list[LibraryScanProgress]) -> str:
    totals = {"new": 0, "removed": 0, "unmatched": 0, "updated": 0, "failed": 0}
    for progress in results:
        for key in totals:
            totals[key] += (progress.result or {}).get(key, 0)
    failed_scans = sum(1 for p in results if p.status == ScanStatus.FAILED.value)
    summary = ", ".join(f"{v} {k}" for k, v in totals.items())
    message = f"Scanned {len(results)} libraries: {summary}"
    if failed_scans:
        message += f"; {failed_scans} scan(s) failed"
    return message


class JobScheduler:
    """Owns the single scheduled library scan job."""

    def __init__(
        self,
        config_service: ConfigService,
        scan_service: LibraryScanService,
        session_maker: async_sessionmaker[AsyncSession],
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.config_service = config_service
        self.scan_service = scan_service
        self._session_maker = session_maker
        self.scheduler = scheduler or AsyncIOScheduler(timezone=config_service.settings.timezone)
        config_service.add_listener(SCHEDULE_KEYS, self.reschedule_from_config)

    async def start(self) -> None:
        """Start the scheduler and arm the job from the current configuration."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Job scheduler started")
        try:
            await self.reschedule_from_config()
        except ScheduleConfigurationError as e:
            logger.error(f"Library scan is not scheduled: {e.message}")

    def shutdown(self) -> None:
        if self.scheduler.running:
            # Running scans are not waited for
            self.scheduler.shutdown(wait=False)
            logger.info("Job scheduler shutdown")

    async def reschedule_from_config(self) -> Job | None:
        cron_expression = await self.config_service.get(ConfigKeys.SCAN_SCHEDULE)
        enabled = await self.config_service.get(ConfigKeys.SCAN_SCHEDULE_ENABLED)
        return self.configure(cron_expression, enabled)

    def configure(self, cron_expression: str | None, enabled: bool = True) -> Job | None:
        """Replace the library scan schedule.

        The expression is parsed before the current job is touched, so an
        invalid expression leaves the existing schedule in place. A scan
        that is already running is not interrupted.

        Raises:
            ScheduleConfigurationError: If the cron expression is invalid
        """
        trigger = None
        if enabled and cron_expression:
            try:
                trigger = parse_cron_expression(
                    cron_expression, timezone=self.config_service.settings.timezone
                )
            except ScheduleConfigurationError:
                logger.debug(f"Rejected scan schedule '{cron_expression}'", exc_info=True)
                raise

        self._remove_job()

        if trigger is None:
            logger.info("Scheduled library scans are disabled")
            return None

        job = self.scheduler.add_job(
            self.run_library_scan_job,
            trigger=trigger,
            id=LIBRARY_SCAN_JOB_ID,
            name=LIBRARY_SCAN_JOB_NAME,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Library scan scheduled with '{cron_expression}' (next run: {self.next_run_time()})")
        return job

    def _remove_job(self) -> None:
        # Removing the job only drops future runs; an executing run finishes
        if self.scheduler.get_job(LIBRARY_SCAN_JOB_ID) is not None:
            self.scheduler.remove_job(LIBRARY_SCAN_JOB_ID)

    def next_run_time(self) -> datetime | None:
        job = self.scheduler.get_job(LIBRARY_SCAN_JOB_ID)
        # Jobs added before the scheduler starts have no run time yet
        return getattr(job, "next_run_time", None) if job else None

    async def run_library_scan_job(self) -> JobRunResult:
        """Scan all libraries and record the run. Never raises."""
        started_at = utcnow()
        logger.info("Starting scheduled library scan")
        try:
            results = await self.scan_service.scan_all(ScanType.SCHEDULED)
            any_failed = any(p.status == ScanStatus.FAILED.value for p in results)
            status = JobRunStatus.FAILED if any_failed else JobRunStatus.SUCCESS
            message = summarize_scans(results)
        except Exception as e:
            logger.error(f"Scheduled library scan failed: {e}")
            logger.debug("Scheduled scan failure", exc_info=True)
            status = JobRunStatus.FAILED
            message = str(e) or type(e).__name__

        run = JobRunResult(
            job_name=LIBRARY_SCAN_JOB_ID,
            status=status.value,
            message=message,
            started_at=started_at,
            finished_at=utcnow(),
        )
        try:
            async with self._session_maker() as db:
                db.add(run)
                await db.commit()
        except Exception as e:
            logger.error(f"Could not record run of '{LIBRARY_SCAN_JOB_ID}': {e}")

        logger.info(f"Scheduled library scan finished ({status.value}): {message}")
        return run

    async def list_job_runs(self, limit: int = 50, job_name: str | None = None) -> list[JobRunResult]:
        query = select(JobRunResult).order_by(JobRunResult.started_at.desc(), JobRunResult.id.desc())
        if job_name:
            query = query.where(JobRunResult.job_name == job_name)
        async with self._session_maker() as db:
            result = await db.execute(query.limit(limit))
            return list(result.scalars().all())
