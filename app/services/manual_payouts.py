import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import PaymentMethod, PayoutStatus
from app.db.models import AffiliatePayout
from app.db.repositories import (
    AffiliateRepository,
    AuditLogRepository,
    PayoutRepository,
    ReferralRepository,
)
from app.exceptions import (
    AffiliateNotFoundException,
    InsufficientBalanceException,
    ValidationException,
)
from app.metrics import ledger_drift_total, payout_amount_cents_total, payouts_total
from app.schemas.payouts import ManualPayoutCreate

logger = logging.getLogger(__name__)


class ManualPayoutRecorder:
    """Records a payout an admin made outside the batch (bank transfer, check, ...).

    Approved unpaid referrals are consumed oldest first until the amount is
    covered. Runs inside the caller's transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.payout_repo = PayoutRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def record(
        self,
        affiliate_id: str,
        data: ManualPayoutCreate,
        actor_id: Optional[str] = None,
    ) -> tuple[AffiliatePayout, int]:
        """Returns the payout and the pending-balance shortfall it hit."""
        if data.amount <= 0:
            raise ValidationException(
                message="Payout amount must be positive",
                details={"amount": data.amount},
            )

        affiliate = await self.affiliate_repo.get_by_id_for_update(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)

        referrals = await self.referral_repo.list_approved_unpaid(affiliate_id)
        available = sum(r.commission_amount for r in referrals)
        if data.amount > available:
            logger.warning(
                "Manual payout exceeds approved balance affiliate_id=%s amount=%s available=%s",
                affiliate_id,
                data.amount,
                available,
                extra={
                    "affiliate_id": affiliate_id,
                    "amount_cents": data.amount,
                    "available_cents": available,
                },
            )
            raise InsufficientBalanceException(affiliate_id, available, data.amount)

        covered = 0
        consumed: list[str] = []
        for referral in referrals:
            if covered >= data.amount:
                break
            consumed.append(referral.id)
            covered += referral.commission_amount

        now = datetime.now(timezone.utc)
        payout = await self.payout_repo.create_payout(
            affiliate_id=affiliate_id,
            amount=data.amount,
            payment_method=data.payment_method,
            status=PayoutStatus.PAID,
            payment_details=data.payment_details,
            notes=data.notes,
            processed_by=actor_id or "system",
            processed_at=now,
        )
        await self.referral_repo.mark_paid(consumed, now)
        shortfall = await self.affiliate_repo.apply_payout(affiliate_id, data.amount)
        if shortfall:
            ledger_drift_total.labels(source="manual_payout").inc()

        await self.audit_repo.create(
            actor=actor_id or "system",
            action="payout.manual",
            entity_type="affiliate_payout",
            entity_id=payout.id,
            metadata_={
                "affiliate_id": affiliate_id,
                "amount": data.amount,
                "payment_method": (
                    data.payment_method.value
                    if isinstance(data.payment_method, PaymentMethod)
                    else data.payment_method
                ),
                "referral_ids": consumed,
                "covered_amount": covered,
            },
        )

        payouts_total.labels(status="manual").inc()
        payout_amount_cents_total.inc(data.amount)
        logger.info(
            "Manual payout recorded payout_id=%s affiliate_id=%s amount_cents=%s referrals=%s",
            payout.id,
            affiliate_id,
            data.amount,
            len(consumed),
            extra={
                "payout_id": payout.id,
                "affiliate_id": affiliate_id,
                "amount_cents": data.amount,
            },
        )
        return payout, shortfall
