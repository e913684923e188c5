from typing import Optional

from fastapi import APIRouter

from app.api.dependencies import JobRunnerDep
from app.schemas.jobs import JobRunOutcome, JobRunRequest, JobsStatus

router = APIRouter()


@router.get("", response_model=JobsStatus)
async def get_jobs_status(job_runner: JobRunnerDep) -> JobsStatus:
    return await job_runner.get_status()


@router.post("/{job_name}/run", response_model=JobRunOutcome)
async def run_job(
    job_name: str,
    job_runner: JobRunnerDep,
    request_data: Optional[JobRunRequest] = None,
) -> JobRunOutcome:
    force_new_key = request_data.force_new_key if request_data else False
    return await job_runner.run_now(job_name, force_new_key=force_new_key)
