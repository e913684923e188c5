import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.enums import JobRunStatus
from app.db.repositories import AuditLogRepository, JobRunRepository
from app.exceptions import (
    DuplicateJobRunException,
    JobAlreadyRunningException,
    JobNotFoundException,
)
from app.metrics import job_runs_total
from app.schemas.jobs import JobInfo, JobResult, JobRunOutcome, JobRunResponse, JobsStatus
from app.services.alerting import ErrorAlertingService

logger = logging.getLogger(__name__)

SCHEDULE_SECONDS = {
    "hourly": 60 * 60,
    "daily": 24 * 60 * 60,
    "weekly": 7 * 24 * 60 * 60,
}

# A run still marked running after this long is treated as crashed
STALE_RUN_SECONDS = 60 * 60

JobHandler = Callable[[], Awaitable[JobResult]]


@dataclass
class JobDefinition:
    name: str
    description: str
    schedule: str
    handler: JobHandler
    get_run_key: Callable[[], str]
    enabled: bool = True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner:
    """Runs registered jobs at most once per run key.

    The key is claimed by inserting a job_runs row; the unique constraint on
    run_key makes a second concurrent trigger fail before its handler runs.
    The scheduler only polls: every job is checked hourly (or at its own
    interval if shorter) and runs when its current key has not been used.
    Manual runs with a fresh key are refused while another run of the same
    job is still in progress.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
        alert_sink: Optional[ErrorAlertingService] = None,
    ) -> None:
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.clock = clock
        self.alert_sink = alert_sink
        self.jobs: dict[str, JobDefinition] = {}
        self.last_run_at: dict[str, datetime] = {}
        self.running = False

    def register(self, job: JobDefinition) -> None:
        if job.name in self.jobs:
            logger.info("Job %s already registered, skipping", job.name)
            return
        if job.schedule not in SCHEDULE_SECONDS:
            raise ValueError(f"Unknown schedule {job.schedule!r} for job {job.name}")
        self.jobs[job.name] = job
        logger.info("Registered job %s schedule=%s", job.name, job.schedule)

    def _get(self, job_name: str) -> JobDefinition:
        job = self.jobs.get(job_name)
        if job is None:
            raise JobNotFoundException(job_name)
        return job

    def start(self) -> None:
        if self.running:
            logger.info("Job runner already running")
            return

        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone="UTC")

        for job in self.jobs.values():
            if not job.enabled:
                logger.info("Job %s is disabled, skipping", job.name)
                continue
            self.scheduler.add_job(
                self.run_if_due,
                "interval",
                seconds=min(SCHEDULE_SECONDS[job.schedule], 60 * 60),
                args=[job.name],
                id=job.name,
                next_run_time=self.clock(),
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
        self.scheduler.start()
        self.running = True
        logger.info("Job runner started with %s jobs", len(self.jobs))

    def stop(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job runner stopped")

    async def run_if_due(self, job_name: str) -> Optional[JobResult]:
        job = self._get(job_name)
        run_key = job.get_run_key()

        async with self.session_factory() as session:
            if await JobRunRepository(session).exists(run_key):
                return None

        return await self._execute(job, run_key)

    async def run_now(
        self,
        job_name: str,
        force_new_key: bool = False,
        handler: Optional[JobHandler] = None,
    ) -> JobRunOutcome:
        """Run a job immediately, optionally through a caller-supplied handler.

        Raises DuplicateJobRunException when the run key is already claimed and
        JobAlreadyRunningException when a fresh key is requested while another
        run of the job has not finished.
        """
        job = self._get(job_name)
        async with self.session_factory() as session:
            repo = JobRunRepository(session)
            if force_new_key:
                running_key = await repo.find_running(
                    job.name,
                    started_after=self.clock() - timedelta(seconds=STALE_RUN_SECONDS),
                )
                if running_key is not None:
                    raise JobAlreadyRunningException(job.name, running_key)
                run_key = f"{job.get_run_key()}:manual:{int(time.time() * 1000)}"
            else:
                run_key = job.get_run_key()
                if await repo.exists(run_key):
                    raise DuplicateJobRunException(run_key)

        run_id = await self._claim(job, run_key)
        if run_id is None:
            raise DuplicateJobRunException(run_key)

        result = await self._run_claimed(job, run_key, run_id, handler or job.handler)
        return JobRunOutcome(job_name=job.name, run_key=run_key, result=result)

    async def _claim(self, job: JobDefinition, run_key: str) -> Optional[int]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    run = await JobRunRepository(session).create_run(
                        job.name, run_key, self.clock()
                    )
                    return run.id
        except IntegrityError:
            logger.info("Duplicate run detected for %s, skipping", run_key)
            job_runs_total.labels(job_name=job.name, status="duplicate").inc()
            return None

    async def _execute(self, job: JobDefinition, run_key: str) -> JobResult:
        run_id = await self._claim(job, run_key)
        if run_id is None:
            return JobResult(success=False, message="Duplicate run")
        return await self._run_claimed(job, run_key, run_id, job.handler)

    async def _run_claimed(
        self,
        job: JobDefinition,
        run_key: str,
        run_id: int,
        handler: JobHandler,
    ) -> JobResult:
        started = time.monotonic()
        logger.info("Starting job %s key=%s", job.name, run_key)

        try:
            result = await handler()
        except Exception as e:
            error_message = str(e) or type(e).__name__
            logger.error(
                "Job %s raised: %s",
                job.name,
                error_message,
                exc_info=True,
                extra={"job_name": job.name, "run_key": run_key},
            )
            await self._finish(
                run_id,
                job,
                run_key,
                started,
                JobRunStatus.FAILED,
                result_data=None,
                error_message=error_message,
                audit_action="job.error",
            )
            if self.alert_sink is not None:
                await self.alert_sink.alert_system_error(
                    "job_runner", job.name, error_message
                )
            return JobResult(success=False, message=error_message)

        status = JobRunStatus.COMPLETED if result.success else JobRunStatus.FAILED
        await self._finish(
            run_id,
            job,
            run_key,
            started,
            status,
            result_data=result.data or {"message": result.message},
            error_message=None if result.success else result.message,
            audit_action=None if result.success else "job.failed",
        )
        return result

    async def _finish(
        self,
        run_id: int,
        job: JobDefinition,
        run_key: str,
        started: float,
        status: JobRunStatus,
        result_data: Optional[dict],
        error_message: Optional[str],
        audit_action: Optional[str],
    ) -> None:
        duration_ms = int((time.monotonic() - started) * 1000)
        async with self.session_factory() as session:
            async with session.begin():
                repo = JobRunRepository(session)
                run = await repo.get_by_id(run_id)
                if run is not None:
                    await repo.finish(
                        run,
                        status=status,
                        completed_at=self.clock(),
                        duration_ms=duration_ms,
                        result=result_data,
                        error_message=error_message,
                    )
                if audit_action:
                    await AuditLogRepository(session).create(
                        actor="system",
                        action=audit_action,
                        entity_type="job",
                        entity_id=str(run_id),
                        metadata_={
                            "job_name": job.name,
                            "run_key": run_key,
                            "error": error_message,
                        },
                    )

        self.last_run_at[job.name] = self.clock()
        job_runs_total.labels(job_name=job.name, status=status.value).inc()
        logger.info(
            "Job %s %s in %sms",
            job.name,
            status.value,
            duration_ms,
            extra={"job_name": job.name, "run_key": run_key, "duration_ms": duration_ms},
        )

    async def get_status(self) -> JobsStatus:
        async with self.session_factory() as session:
            recent = await JobRunRepository(session).list_recent(limit=50)

        return JobsStatus(
            running=self.running,
            jobs=[
                JobInfo(
                    name=job.name,
                    description=job.description,
                    schedule=job.schedule,
                    enabled=job.enabled,
                    current_run_key=job.get_run_key(),
                    last_run_at=self.last_run_at.get(job.name),
                )
                for job in self.jobs.values()
            ],
            recent_runs=[JobRunResponse.model_validate(run) for run in recent],
        )
