import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.enums import PaymentMethod, PayoutResultStatus, PayoutStatus
from app.db.models import AffiliatePayout
from app.db.repositories import (
    AffiliateRepository,
    AuditLogRepository,
    PayoutRepository,
    ReferralRepository,
)
from app.exceptions import (
    BaseAPIException,
    InvalidPayoutStateException,
    PayoutMetadataException,
    PayoutNotFoundException,
    TransferGatewayException,
)
from app.metrics import (
    last_batch_amount_paid,
    ledger_drift_total,
    payout_amount_cents_total,
    payout_batches_total,
    payouts_total,
)
from app.schemas.payouts import (
    EligibilityReport,
    EligibleAffiliate,
    PayoutBatchSummary,
    PayoutMetadata,
    PayoutResult,
)
from app.services.alerting import ErrorAlertingService
from app.services.commission_state_machine import status_value
from app.services.payout_eligibility import PayoutEligibilityEvaluator
from app.services.payout_period import BatchPeriod, compute_batch_period
from app.services.settings_provider import AffiliateSettingsProvider
from app.services.transfer_gateway import TransferGateway

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_payout_metadata(payout_id: str, notes: Optional[str]) -> PayoutMetadata:
    """Parse the referral set a pending payout was created for.

    Anything that does not validate is a hard stop: the referral set is never
    re-derived from current balances.
    """
    if not notes:
        raise PayoutMetadataException(payout_id, "payout has no metadata")
    try:
        return PayoutMetadata.model_validate_json(notes)
    except ValidationError as e:
        raise PayoutMetadataException(payout_id, str(e)) from e


class PayoutBatchOrchestrator:
    """Runs the weekly affiliate payout batch.

    Affiliates are processed one after another. For each one the payout record
    is created (or adopted) in its own transaction, the transfer is requested
    outside any transaction, and the ledger is settled in a single transaction
    that marks the payout and its referrals paid and moves the amount from
    pending to paid. A failure for one affiliate never stops the batch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transfer_gateway: TransferGateway,
        settings_provider: AffiliateSettingsProvider,
        alert_sink: ErrorAlertingService,
        clock: Callable[[], datetime] = utcnow,
        supported_country: str = "US",
        supported_currency: str = "usd",
    ) -> None:
        self.session_factory = session_factory
        self.transfer_gateway = transfer_gateway
        self.settings_provider = settings_provider
        self.alert_sink = alert_sink
        self.clock = clock
        self.supported_country = supported_country
        self.supported_currency = supported_currency

    async def run_payout_batch(
        self, dry_run: bool = True, actor_id: Optional[str] = None
    ) -> PayoutBatchSummary:
        started_at = self.clock()
        period = compute_batch_period(started_at)
        program = await self.settings_provider.get_affiliate_settings()
        minimum_payout = program.minimum_payout

        logger.info(
            "Payout batch started batch_id=%s dry_run=%s minimum_payout=%s",
            period.batch_id,
            dry_run,
            minimum_payout,
            extra={"batch_id": period.batch_id, "dry_run": dry_run},
        )

        async with self.session_factory() as session:
            evaluator = PayoutEligibilityEvaluator(
                session, self.supported_country, self.supported_currency
            )
            report = await evaluator.compute_eligible_payouts(minimum_payout)

        results: list[PayoutResult] = []
        for item in report.eligible:
            if dry_run:
                results.append(await self._preview(item, period))
                continue

            try:
                result = await self._pay_affiliate(item, period, actor_id)
            except BaseAPIException as e:
                result = self._failed(item, item.total_amount, e.message)
            except Exception as e:
                logger.error(
                    "Payout failed affiliate_id=%s batch_id=%s: %s",
                    item.affiliate_id,
                    period.batch_id,
                    e,
                    exc_info=True,
                    extra={"affiliate_id": item.affiliate_id, "batch_id": period.batch_id},
                )
                result = self._failed(item, item.total_amount, str(e) or type(e).__name__)
            results.append(result)

        # Affiliates settled earlier in this batch have nothing left to pay
        results.extend(await self._settled_in_batch(period, report))

        for ineligible in report.ineligible:
            results.append(
                PayoutResult(
                    affiliate_id=ineligible.affiliate_id,
                    affiliate_code=ineligible.affiliate_code,
                    status=PayoutResultStatus.SKIPPED,
                    amount=ineligible.pending_amount,
                    reason=ineligible.reason.value,
                    detail=ineligible.detail,
                )
            )

        summary = self._summarize(
            period, started_at, dry_run, minimum_payout, report, results
        )
        payout_batches_total.labels(dry_run=str(dry_run).lower()).inc()

        if not dry_run:
            last_batch_amount_paid.set(summary.total_amount_paid)
            if summary.successful_payouts or summary.failed_payouts:
                await self._write_audit_log(summary, actor_id)
            if summary.failed_payouts:
                failed = [r for r in results if r.status == PayoutResultStatus.FAILED]
                await self.alert_sink.alert_payout_batch_error(
                    batch_id=summary.batch_id,
                    total_payouts=summary.eligible_affiliates,
                    failed_count=summary.failed_payouts,
                    total_amount=sum(r.amount for r in failed),
                    errors=[f"{r.affiliate_code}: {r.error}" for r in failed if r.error],
                )

        logger.info(
            "Payout batch finished batch_id=%s dry_run=%s paid=%s failed=%s skipped=%s already_paid=%s amount_paid=%s",
            summary.batch_id,
            dry_run,
            summary.successful_payouts,
            summary.failed_payouts,
            summary.skipped_payouts,
            summary.already_paid_payouts,
            summary.total_amount_paid,
            extra={
                "batch_id": summary.batch_id,
                "dry_run": dry_run,
                "successful_payouts": summary.successful_payouts,
                "failed_payouts": summary.failed_payouts,
                "total_amount_paid": summary.total_amount_paid,
            },
        )
        return summary

    async def _find_existing(
        self, affiliate_id: str, batch_id: str
    ) -> Optional[AffiliatePayout]:
        async with self.session_factory() as session:
            return await PayoutRepository(session).get_for_batch(affiliate_id, batch_id)

    async def _settled_in_batch(
        self, period: BatchPeriod, report: EligibilityReport
    ) -> list[PayoutResult]:
        listed = {item.affiliate_id for item in report.eligible}
        listed.update(item.affiliate_id for item in report.ineligible)
        async with self.session_factory() as session:
            paid = await PayoutRepository(session).list_paid_for_batch(period.batch_id)

        return [
            PayoutResult(
                affiliate_id=payout.affiliate_id,
                affiliate_code=affiliate_code,
                status=PayoutResultStatus.ALREADY_PAID,
                amount=payout.amount,
                payout_id=payout.id,
                transfer_id=payout.transfer_id,
            )
            for payout, affiliate_code in paid
            if payout.affiliate_id not in listed
        ]

    async def _preview(self, item: EligibleAffiliate, period: BatchPeriod) -> PayoutResult:
        existing = await self._find_existing(item.affiliate_id, period.batch_id)
        if existing is not None and status_value(existing.status) == PayoutStatus.PAID.value:
            return self._already_paid(item, existing)
        return PayoutResult(
            affiliate_id=item.affiliate_id,
            affiliate_code=item.affiliate_code,
            status=PayoutResultStatus.SKIPPED,
            amount=item.total_amount,
            payout_id=existing.id if existing is not None else None,
            reason="dry_run",
        )

    async def _pay_affiliate(
        self,
        item: EligibleAffiliate,
        period: BatchPeriod,
        actor_id: Optional[str],
    ) -> PayoutResult:
        existing = await self._find_existing(item.affiliate_id, period.batch_id)
        if existing is None:
            try:
                payout_id, metadata = await self._create_pending_payout(item, period)
            except IntegrityError:
                # A concurrent run created the record for this batch first
                existing = await self._find_existing(item.affiliate_id, period.batch_id)
                if existing is None:
                    raise

        if existing is not None:
            existing_status = status_value(existing.status)
            if existing_status == PayoutStatus.PAID.value:
                return self._already_paid(item, existing)
            if existing_status != PayoutStatus.PENDING.value:
                return self._failed(
                    item,
                    existing.amount,
                    f"Payout {existing.id} for this batch is {existing_status} "
                    "- manual intervention required",
                    payout_id=existing.id,
                )
            metadata = decode_payout_metadata(existing.id, existing.notes)
            payout_id = existing.id
            logger.info(
                "Resuming pending payout payout_id=%s affiliate_id=%s amount=%s",
                payout_id,
                item.affiliate_id,
                metadata.created_amount,
                extra={
                    "payout_id": payout_id,
                    "affiliate_id": item.affiliate_id,
                    "batch_id": period.batch_id,
                },
            )

        idempotency_key = f"payout-{period.batch_id}-{item.affiliate_id}"
        try:
            transfer = await self.transfer_gateway.create_transfer(
                amount=metadata.created_amount,
                currency=self.supported_currency,
                destination=item.destination_account,
                metadata={
                    "payout_id": payout_id,
                    "affiliate_id": item.affiliate_id,
                    "batch_id": period.batch_id,
                    "period_start": period.period_start.isoformat(),
                    "period_end": period.period_end.isoformat(),
                },
                idempotency_key=idempotency_key,
            )
        except TransferGatewayException as e:
            payouts_total.labels(status="failed").inc()
            logger.warning(
                "Transfer failed payout_id=%s affiliate_id=%s: %s",
                payout_id,
                item.affiliate_id,
                e.message,
                extra={
                    "payout_id": payout_id,
                    "affiliate_id": item.affiliate_id,
                    "batch_id": period.batch_id,
                    "idempotency_key": idempotency_key,
                },
            )
            return self._failed(
                item,
                metadata.created_amount,
                f"Transfer failed: {e.message}",
                payout_id=payout_id,
            )

        try:
            shortfall = await self._settle(
                payout_id, item.affiliate_id, metadata, transfer.id, actor_id
            )
        except Exception as e:
            logger.error(
                "Ledger update failed after transfer transfer_id=%s payout_id=%s affiliate_id=%s: %s",
                transfer.id,
                payout_id,
                item.affiliate_id,
                e,
                exc_info=True,
                extra={
                    "transfer_id": transfer.id,
                    "payout_id": payout_id,
                    "affiliate_id": item.affiliate_id,
                    "batch_id": period.batch_id,
                },
            )
            payouts_total.labels(status="failed").inc()
            return self._failed(
                item,
                metadata.created_amount,
                f"Transfer {transfer.id} succeeded but ledger update failed: {e}",
                payout_id=payout_id,
            )

        if shortfall is None:
            logger.info(
                "Payout settled by a concurrent run payout_id=%s affiliate_id=%s transfer_id=%s",
                payout_id,
                item.affiliate_id,
                transfer.id,
                extra={
                    "payout_id": payout_id,
                    "affiliate_id": item.affiliate_id,
                    "batch_id": period.batch_id,
                    "transfer_id": transfer.id,
                },
            )
            return PayoutResult(
                affiliate_id=item.affiliate_id,
                affiliate_code=item.affiliate_code,
                status=PayoutResultStatus.ALREADY_PAID,
                amount=metadata.created_amount,
                payout_id=payout_id,
                transfer_id=transfer.id,
            )

        if shortfall:
            ledger_drift_total.labels(source="payout").inc()
            await self.alert_sink.alert_ledger_drift(
                item.affiliate_id, "payout", shortfall
            )

        payouts_total.labels(status="paid").inc()
        payout_amount_cents_total.inc(metadata.created_amount)
        logger.info(
            "Payout paid payout_id=%s affiliate_id=%s amount_cents=%s transfer_id=%s",
            payout_id,
            item.affiliate_id,
            metadata.created_amount,
            transfer.id,
            extra={
                "payout_id": payout_id,
                "affiliate_id": item.affiliate_id,
                "batch_id": period.batch_id,
                "amount_cents": metadata.created_amount,
                "transfer_id": transfer.id,
            },
        )
        return PayoutResult(
            affiliate_id=item.affiliate_id,
            affiliate_code=item.affiliate_code,
            status=PayoutResultStatus.PAID,
            amount=metadata.created_amount,
            payout_id=payout_id,
            transfer_id=transfer.id,
        )

    async def _create_pending_payout(
        self, item: EligibleAffiliate, period: BatchPeriod
    ) -> tuple[str, PayoutMetadata]:
        metadata = PayoutMetadata(
            referral_ids=list(item.referral_amounts),
            referral_amounts=item.referral_amounts,
            created_amount=item.total_amount,
            period_start=period.period_start,
            period_end=period.period_end,
        )
        async with self.session_factory() as session:
            async with session.begin():
                payout = await PayoutRepository(session).create_payout(
                    affiliate_id=item.affiliate_id,
                    amount=metadata.created_amount,
                    payment_method=PaymentMethod.STRIPE_CONNECT,
                    status=PayoutStatus.PENDING,
                    payout_batch_id=period.batch_id,
                    payment_details=item.destination_account,
                    notes=metadata.model_dump_json(),
                )
                payout_id = payout.id

        payouts_total.labels(status="created").inc()
        logger.info(
            "Pending payout created payout_id=%s affiliate_id=%s amount_cents=%s referrals=%s",
            payout_id,
            item.affiliate_id,
            metadata.created_amount,
            len(metadata.referral_ids),
            extra={
                "payout_id": payout_id,
                "affiliate_id": item.affiliate_id,
                "batch_id": period.batch_id,
                "amount_cents": metadata.created_amount,
            },
        )
        return payout_id, metadata

    async def _settle(
        self,
        payout_id: str,
        affiliate_id: str,
        metadata: PayoutMetadata,
        transfer_id: str,
        actor_id: Optional[str],
    ) -> Optional[int]:
        """Commit the ledger side of a successful transfer.

        Returns the pending shortfall, or None when another run settled the
        payout between the transfer and this call. The payout row lock is held
        while its status is checked so the balance moves exactly once.
        """
        paid_at = self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                payout_repo = PayoutRepository(session)
                payout = await payout_repo.get_by_id_for_update(payout_id)
                if payout is None:
                    raise PayoutNotFoundException(payout_id)

                current_status = status_value(payout.status)
                if current_status == PayoutStatus.PAID.value:
                    return None
                if current_status != PayoutStatus.PENDING.value:
                    raise InvalidPayoutStateException(payout_id, current_status)

                await payout_repo.mark_paid(
                    payout,
                    transfer_id=transfer_id,
                    processed_at=paid_at,
                    processed_by=actor_id or "system",
                )

                marked = await ReferralRepository(session).mark_paid(
                    metadata.referral_ids, paid_at
                )
                if marked != len(metadata.referral_ids):
                    logger.warning(
                        "Referral set changed since payout creation payout_id=%s expected=%s marked=%s",
                        payout_id,
                        len(metadata.referral_ids),
                        marked,
                        extra={
                            "payout_id": payout_id,
                            "affiliate_id": affiliate_id,
                            "expected": len(metadata.referral_ids),
                            "marked": marked,
                        },
                    )

                return await AffiliateRepository(session).apply_payout(
                    affiliate_id, metadata.created_amount
                )

    async def _write_audit_log(
        self, summary: PayoutBatchSummary, actor_id: Optional[str]
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await AuditLogRepository(session).create(
                    actor=actor_id or "system",
                    action="affiliate_payout_batch",
                    entity_type="payout_batch",
                    entity_id=summary.batch_id,
                    metadata_=summary.model_dump(
                        mode="json", exclude={"results", "timestamp"}
                    ),
                )

    def _already_paid(
        self, item: EligibleAffiliate, existing: AffiliatePayout
    ) -> PayoutResult:
        return PayoutResult(
            affiliate_id=item.affiliate_id,
            affiliate_code=item.affiliate_code,
            status=PayoutResultStatus.ALREADY_PAID,
            amount=existing.amount,
            payout_id=existing.id,
            transfer_id=existing.transfer_id,
        )

    def _failed(
        self,
        item: EligibleAffiliate,
        amount: int,
        error: str,
        payout_id: Optional[str] = None,
    ) -> PayoutResult:
        return PayoutResult(
            affiliate_id=item.affiliate_id,
            affiliate_code=item.affiliate_code,
            status=PayoutResultStatus.FAILED,
            amount=amount,
            payout_id=payout_id,
            error=error,
        )

    def _summarize(
        self,
        period: BatchPeriod,
        started_at: datetime,
        dry_run: bool,
        minimum_payout: int,
        report: EligibilityReport,
        results: list[PayoutResult],
    ) -> PayoutBatchSummary:
        def count(status: PayoutResultStatus) -> int:
            return sum(1 for r in results if r.status == status)

        return PayoutBatchSummary(
            batch_id=period.batch_id,
            period_start=period.period_start,
            period_end=period.period_end,
            dry_run=dry_run,
            timestamp=started_at,
            total_affiliates=len({r.affiliate_id for r in results}),
            eligible_affiliates=len(report.eligible),
            ineligible_affiliates=len(report.ineligible),
            successful_payouts=count(PayoutResultStatus.PAID),
            failed_payouts=count(PayoutResultStatus.FAILED),
            skipped_payouts=count(PayoutResultStatus.SKIPPED),
            already_paid_payouts=count(PayoutResultStatus.ALREADY_PAID),
            total_amount_paid=sum(
                r.amount for r in results if r.status == PayoutResultStatus.PAID
            ),
            minimum_payout=minimum_payout,
            results=results,
        )
