import logging

from fastapi import APIRouter

from app.api.dependencies import (
    ActorDep,
    JobRunnerDep,
    OrchestratorDep,
    SessionDep,
    SettingsProviderDep,
)
from app.core.config import settings
from app.db.repositories import PayoutRepository
from app.exceptions import PayoutNotFoundException, SystemException
from app.schemas.jobs import JobResult
from app.schemas.payouts import (
    EligibilityReport,
    PayoutBatchSummary,
    PayoutResponse,
    PayoutRunRequest,
)
from app.services.payout_eligibility import PayoutEligibilityEvaluator
from app.services.scheduled_jobs import PAYOUT_JOB_NAME, payout_job_result

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/run", response_model=PayoutBatchSummary)
async def run_payouts(
    payout_data: PayoutRunRequest,
    orchestrator: OrchestratorDep,
    job_runner: JobRunnerDep,
    actor_id: ActorDep,
) -> PayoutBatchSummary:
    logger.info(
        "Payout batch requested dry_run=%s force_new_key=%s actor=%s",
        payout_data.dry_run,
        payout_data.force_new_key,
        actor_id,
    )
    if payout_data.dry_run:
        return await orchestrator.run_payout_batch(dry_run=True, actor_id=actor_id)

    # Real runs share the scheduled job's run key so they cannot overlap
    summaries: list[PayoutBatchSummary] = []

    async def handler() -> JobResult:
        summary = await orchestrator.run_payout_batch(dry_run=False, actor_id=actor_id)
        summaries.append(summary)
        return payout_job_result(summary)

    outcome = await job_runner.run_now(
        PAYOUT_JOB_NAME, force_new_key=payout_data.force_new_key, handler=handler
    )
    if not summaries:
        raise SystemException(
            message=f"Payout batch failed: {outcome.result.message}",
            details={"run_key": outcome.run_key},
        )
    return summaries[0]


@router.get("/eligibility", response_model=EligibilityReport)
async def get_payout_eligibility(
    session: SessionDep, settings_provider: SettingsProviderDep
) -> EligibilityReport:
    program = await settings_provider.get_affiliate_settings()
    evaluator = PayoutEligibilityEvaluator(
        session, settings.payout_country, settings.payout_currency
    )
    return await evaluator.compute_eligible_payouts(program.minimum_payout)


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(payout_id: str, session: SessionDep) -> PayoutResponse:
    payout_repo = PayoutRepository(session)
    payout = await payout_repo.get_by_id(payout_id)

    if not payout:
        raise PayoutNotFoundException(payout_id)

    return PayoutResponse.model_validate(payout)
