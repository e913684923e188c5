from datetime import timedelta

import pytest

from app.core.enums import AlertCategory, AlertSeverity, JobRunStatus, ReferralStatus
from app.db.models import JobRun
from app.db.repositories import JobRunRepository
from app.db.session import AsyncSessionLocal
from app.exceptions import (
    DuplicateJobRunException,
    JobAlreadyRunningException,
    JobNotFoundException,
)
from app.schemas.jobs import JobResult
from app.services.alerting import ErrorAlertingService
from app.services.job_runner import STALE_RUN_SECONDS, JobDefinition, JobRunner
from app.services.payout_orchestrator import PayoutBatchOrchestrator
from app.services.scheduled_jobs import build_job_runner
from app.services.settings_provider import AffiliateSettingsProvider
from tests.utils.fakes import FIXED_NOW, NotificationCollector
from tests.utils import load_audit_logs, load_referral, seed_affiliate, seed_referral


def make_job(handler, run_key: str = "nightly_report:2026-10-21") -> JobDefinition:
    return JobDefinition(
        name="nightly_report",
        description="Test job",
        schedule="daily",
        handler=handler,
        get_run_key=lambda: run_key,
    )


async def load_runs() -> list[JobRun]:
    async with AsyncSessionLocal() as session:
        return await JobRunRepository(session).list_recent()


@pytest.fixture
def runner() -> JobRunner:
    return JobRunner(AsyncSessionLocal, clock=lambda: FIXED_NOW)


@pytest.fixture
def scheduled_runner(
    orchestrator: PayoutBatchOrchestrator,
    settings_provider: AffiliateSettingsProvider,
) -> JobRunner:
    return build_job_runner(
        AsyncSessionLocal, orchestrator, settings_provider, clock=lambda: FIXED_NOW
    )


@pytest.mark.integration
class TestJobRunner:
    async def test_runs_once_per_key(self, runner: JobRunner) -> None:
        calls = []

        async def handler() -> JobResult:
            calls.append(1)
            return JobResult(success=True, message="done", data={"rows": 3})

        runner.register(make_job(handler))

        outcome = await runner.run_now("nightly_report")
        assert outcome.run_key == "nightly_report:2026-10-21"
        assert outcome.result.success is True

        with pytest.raises(DuplicateJobRunException) as exc_info:
            await runner.run_now("nightly_report")
        assert exc_info.value.details["run_key"] == "nightly_report:2026-10-21"

        assert await runner.run_if_due("nightly_report") is None
        assert len(calls) == 1

        runs = await load_runs()
        assert len(runs) == 1
        assert runs[0].status == JobRunStatus.COMPLETED.value
        assert runs[0].result == {"rows": 3}
        assert runs[0].completed_at is not None
        assert runs[0].duration_ms is not None

    async def test_run_if_due_executes_unclaimed_key(self, runner: JobRunner) -> None:
        async def handler() -> JobResult:
            return JobResult(success=True, message="done")

        runner.register(make_job(handler))

        result = await runner.run_if_due("nightly_report")

        assert result.success is True
        runs = await load_runs()
        assert runs[0].result == {"message": "done"}

    async def test_claimed_key_skips_handler(self, runner: JobRunner) -> None:
        calls = []

        async def handler() -> JobResult:
            calls.append(1)
            return JobResult(success=True)

        job = make_job(handler)
        runner.register(job)
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await JobRunRepository(session).create_run(
                    job.name, "nightly_report:2026-10-21", FIXED_NOW
                )

        # Key claimed between the existence check and the insert
        result = await runner._execute(job, "nightly_report:2026-10-21")

        assert result.success is False
        assert result.message == "Duplicate run"
        assert calls == []

    async def test_force_new_key_bypasses_claim(self, runner: JobRunner) -> None:
        calls = []

        async def handler() -> JobResult:
            calls.append(1)
            return JobResult(success=True)

        runner.register(make_job(handler))
        await runner.run_now("nightly_report")

        outcome = await runner.run_now("nightly_report", force_new_key=True)

        assert outcome.run_key.startswith("nightly_report:2026-10-21:manual:")
        assert len(calls) == 2
        assert len(await load_runs()) == 2

    async def test_handler_exception_marks_run_failed(self, runner: JobRunner) -> None:
        async def handler() -> JobResult:
            raise RuntimeError("warehouse unreachable")

        runner.register(make_job(handler))

        result = await runner.run_if_due("nightly_report")

        assert result.success is False
        assert result.message == "warehouse unreachable"
        runs = await load_runs()
        assert runs[0].status == JobRunStatus.FAILED.value
        assert runs[0].error_message == "warehouse unreachable"

        logs = await load_audit_logs("job.error")
        assert len(logs) == 1
        assert logs[0].metadata_["run_key"] == "nightly_report:2026-10-21"

    async def test_handler_exception_raises_system_alert(
        self,
        alerting: ErrorAlertingService,
        notifications: NotificationCollector,
    ) -> None:
        async def handler() -> JobResult:
            raise RuntimeError("warehouse unreachable")

        runner = JobRunner(AsyncSessionLocal, clock=lambda: FIXED_NOW, alert_sink=alerting)
        runner.register(make_job(handler))

        await runner.run_if_due("nightly_report")

        alert = notifications.last()
        assert alert.category == AlertCategory.SYSTEM_ERROR
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.details == {"component": "job_runner", "operation": "nightly_report"}
        assert "warehouse unreachable" in alert.message

    async def test_unsuccessful_result_does_not_alert(
        self,
        alerting: ErrorAlertingService,
        notifications: NotificationCollector,
    ) -> None:
        async def handler() -> JobResult:
            return JobResult(success=False, message="nothing to export")

        runner = JobRunner(AsyncSessionLocal, clock=lambda: FIXED_NOW, alert_sink=alerting)
        runner.register(make_job(handler))

        await runner.run_now("nightly_report")

        assert notifications.alerts == []

    async def test_forced_run_refused_while_another_is_running(
        self, runner: JobRunner
    ) -> None:
        calls = []

        async def handler() -> JobResult:
            calls.append(1)
            return JobResult(success=True)

        runner.register(make_job(handler))
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await JobRunRepository(session).create_run(
                    "nightly_report", "nightly_report:2026-10-21", FIXED_NOW
                )

        with pytest.raises(JobAlreadyRunningException) as exc_info:
            await runner.run_now("nightly_report", force_new_key=True)

        assert exc_info.value.details["run_key"] == "nightly_report:2026-10-21"
        assert calls == []

    async def test_stale_running_row_does_not_block_forced_run(
        self, runner: JobRunner
    ) -> None:
        async def handler() -> JobResult:
            return JobResult(success=True)

        runner.register(make_job(handler))
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await JobRunRepository(session).create_run(
                    "nightly_report",
                    "nightly_report:2026-10-20",
                    FIXED_NOW - timedelta(seconds=STALE_RUN_SECONDS + 60),
                )

        outcome = await runner.run_now("nightly_report", force_new_key=True)

        assert outcome.result.success is True

    async def test_run_now_with_handler_override(self, runner: JobRunner) -> None:
        async def scheduled() -> JobResult:
            return JobResult(success=True, message="scheduled")

        async def manual() -> JobResult:
            return JobResult(success=True, message="manual")

        runner.register(make_job(scheduled))

        outcome = await runner.run_now("nightly_report", handler=manual)

        assert outcome.result.message == "manual"
        assert await runner.run_if_due("nightly_report") is None

    async def test_unsuccessful_result_is_audited(self, runner: JobRunner) -> None:
        async def handler() -> JobResult:
            return JobResult(success=False, message="nothing to export")

        runner.register(make_job(handler))

        await runner.run_now("nightly_report")

        runs = await load_runs()
        assert runs[0].status == JobRunStatus.FAILED.value
        assert runs[0].error_message == "nothing to export"
        assert len(await load_audit_logs("job.failed")) == 1
        assert await load_audit_logs("job.error") == []

    async def test_unknown_job(self, runner: JobRunner) -> None:
        with pytest.raises(JobNotFoundException):
            await runner.run_now("missing")

    async def test_unknown_schedule_rejected(self, runner: JobRunner) -> None:
        async def handler() -> JobResult:
            return JobResult(success=True)

        job = make_job(handler)
        job.schedule = "monthly"
        with pytest.raises(ValueError):
            runner.register(job)


@pytest.mark.integration
class TestScheduledJobs:
    async def test_run_keys(self, scheduled_runner: JobRunner) -> None:
        status = await scheduled_runner.get_status()

        keys = {job.name: job.current_run_key for job in status.jobs}
        assert keys == {
            "affiliate_payout": "affiliate_payout:2026-W43",
            "commission_approval": "commission_approval:2026-10-21",
        }
        assert status.running is False
        assert status.recent_runs == []

    async def test_payout_job_runs_batch(self, scheduled_runner: JobRunner) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 7000)

        outcome = await scheduled_runner.run_now("affiliate_payout")

        assert outcome.result.success is True
        assert outcome.result.data["batch_id"] == "BATCH-2026-W43"
        assert outcome.result.data["total_paid"] == 7000
        assert outcome.result.data["successful"] == 1

        with pytest.raises(DuplicateJobRunException):
            await scheduled_runner.run_now("affiliate_payout")

        logs = await load_audit_logs("affiliate_payout_batch")
        assert logs[0].actor == "system:scheduler"

        status = await scheduled_runner.get_status()
        assert status.recent_runs[0].run_key == "affiliate_payout:2026-W43"
        assert status.recent_runs[0].status == JobRunStatus.COMPLETED

    async def test_commission_approval_job(self, scheduled_runner: JobRunner) -> None:
        affiliate_id = await seed_affiliate()
        old = await seed_referral(
            affiliate_id,
            2500,
            status=ReferralStatus.PENDING,
            created_at=FIXED_NOW - timedelta(days=20),
        )
        fresh = await seed_referral(
            affiliate_id,
            2500,
            status=ReferralStatus.PENDING,
            created_at=FIXED_NOW - timedelta(days=2),
        )

        outcome = await scheduled_runner.run_now("commission_approval")

        assert outcome.result.success is True
        assert outcome.result.data["approved"] == 1
        assert (await load_referral(old)).status == ReferralStatus.APPROVED.value
        assert (await load_referral(fresh)).status == ReferralStatus.PENDING.value
