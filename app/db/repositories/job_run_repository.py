from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import JobRunStatus
from app.db.models import JobRun


class JobRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, run_key: str) -> bool:
        stmt = select(JobRun.id).where(JobRun.run_key == run_key).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def create_run(
        self, job_name: str, run_key: str, started_at: datetime
    ) -> JobRun:
        """Insert the run marker. Raises IntegrityError when run_key is taken."""
        run = JobRun(
            job_name=job_name,
            run_key=run_key,
            status=JobRunStatus.RUNNING,
            started_at=started_at,
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def get_by_id(self, run_id: int) -> Optional[JobRun]:
        stmt = select(JobRun).where(JobRun.id == run_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def finish(
        self,
        run: JobRun,
        status: JobRunStatus,
        completed_at: datetime,
        duration_ms: int,
        result: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> JobRun:
        run.status = status
        run.completed_at = completed_at
        run.duration_ms = duration_ms
        run.result = result
        run.error_message = error_message
        await self.session.flush()
        return run

    async def list_recent(self, limit: int = 50) -> list[JobRun]:
        stmt = select(JobRun).order_by(JobRun.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_running(
        self, job_name: str, started_after: datetime
    ) -> Optional[str]:
        """Return the run key of an unfinished run started after the cutoff."""
        stmt = (
            select(JobRun.run_key)
            .where(
                JobRun.job_name == job_name,
                JobRun.status == JobRunStatus.RUNNING,
                JobRun.started_at >= started_after,
            )
            .order_by(JobRun.started_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
