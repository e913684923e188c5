import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.schemas.jobs import JobResult
from app.schemas.payouts import PayoutBatchSummary
from app.services.alerting import ErrorAlertingService
from app.services.commission_state_machine import CommissionStateMachine
from app.services.job_runner import JobDefinition, JobRunner
from app.services.payout_orchestrator import PayoutBatchOrchestrator, utcnow
from app.services.payout_period import compute_batch_period
from app.services.settings_provider import AffiliateSettingsProvider

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "system:scheduler"
PAYOUT_JOB_NAME = "affiliate_payout"


def payout_job_result(summary: PayoutBatchSummary) -> JobResult:
    return JobResult(
        success=True,
        message=(
            f"Processed {summary.successful_payouts} payouts, "
            f"{summary.failed_payouts} failed"
        ),
        data={
            "batch_id": summary.batch_id,
            "total_paid": summary.total_amount_paid,
            "successful": summary.successful_payouts,
            "failed": summary.failed_payouts,
            "already_paid": summary.already_paid_payouts,
        },
    )


def affiliate_payout_job(
    orchestrator: PayoutBatchOrchestrator,
    clock: Callable[[], datetime] = utcnow,
) -> JobDefinition:
    async def handler() -> JobResult:
        summary = await orchestrator.run_payout_batch(
            dry_run=False, actor_id=SCHEDULER_ACTOR
        )
        return payout_job_result(summary)

    return JobDefinition(
        name=PAYOUT_JOB_NAME,
        description="Process weekly affiliate payouts via Stripe Connect",
        schedule="weekly",
        handler=handler,
        get_run_key=lambda: f"{PAYOUT_JOB_NAME}:{compute_batch_period(clock()).week_key}",
    )


def commission_approval_job(
    session_factory: async_sessionmaker[AsyncSession],
    settings_provider: AffiliateSettingsProvider,
    clock: Callable[[], datetime] = utcnow,
) -> JobDefinition:
    async def handler() -> JobResult:
        async with session_factory() as session:
            async with session.begin():
                machine = CommissionStateMachine(session, settings_provider)
                result = await machine.auto_approve(now=clock())
        return JobResult(
            success=True,
            message=f"Auto-approved {result.approved} commissions",
            data=result.model_dump(mode="json"),
        )

    return JobDefinition(
        name="commission_approval",
        description="Auto-approve pending commissions past the hold period",
        schedule="daily",
        handler=handler,
        get_run_key=lambda: f"commission_approval:{clock().date().isoformat()}",
    )


def build_job_runner(
    session_factory: async_sessionmaker[AsyncSession],
    orchestrator: PayoutBatchOrchestrator,
    settings_provider: AffiliateSettingsProvider,
    clock: Callable[[], datetime] = utcnow,
    alert_sink: Optional[ErrorAlertingService] = None,
) -> JobRunner:
    runner = JobRunner(session_factory, clock=clock, alert_sink=alert_sink)
    runner.register(affiliate_payout_job(orchestrator, clock))
    runner.register(commission_approval_job(session_factory, settings_provider, clock))
    return runner
