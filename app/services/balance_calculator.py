import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import ReferralStatus
from app.db.repositories import AffiliateRepository, ReferralRepository
from app.exceptions import AffiliateNotFoundException
from app.metrics import ledger_drift_total
from app.schemas.affiliates import AffiliateBalance, BalanceDriftReport

logger = logging.getLogger(__name__)


class BalanceCalculator:
    def __init__(self, session: AsyncSession) -> None:
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)

    async def get_balance(self, affiliate_id: str) -> AffiliateBalance:
        affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)

        sums = await self.referral_repo.sum_by_status(affiliate_id)
        pending = sums.get(ReferralStatus.PENDING.value, 0)
        approved = sums.get(ReferralStatus.APPROVED.value, 0)

        return AffiliateBalance(
            affiliate_id=affiliate.id,
            pending_balance=affiliate.pending_balance,
            approved_balance=approved,
            paid_balance=affiliate.paid_balance,
            total_earnings=affiliate.total_earnings,
            derived_pending_cents=pending + approved,
            derived_approved_cents=approved,
        )

    async def reconcile(self, affiliate_id: str) -> BalanceDriftReport:
        """Compare the stored pending balance with the referral ledger.

        Reports drift only; stored balances are left as they are.
        """
        balance = await self.get_balance(affiliate_id)
        drift = balance.pending_balance - balance.derived_pending_cents
        report = BalanceDriftReport(
            affiliate_id=affiliate_id,
            stored_pending_cents=balance.pending_balance,
            derived_pending_cents=balance.derived_pending_cents,
            drift_cents=drift,
            in_sync=drift == 0,
        )

        if drift:
            ledger_drift_total.labels(source="reconcile").inc()
            logger.warning(
                "Affiliate balance drift affiliate_id=%s stored=%s derived=%s drift=%s",
                affiliate_id,
                balance.pending_balance,
                balance.derived_pending_cents,
                drift,
                extra={
                    "affiliate_id": affiliate_id,
                    "stored_pending_cents": balance.pending_balance,
                    "derived_pending_cents": balance.derived_pending_cents,
                    "drift_cents": drift,
                },
            )
        return report
