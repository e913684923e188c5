import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import AffiliateStatus, CommissionType
from app.db.models import (
    Affiliate,
    AffiliatePayout,
    AffiliatePayoutAccount,
    AffiliateReferral,
)

logger = logging.getLogger(__name__)


class AffiliateRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        affiliate_code: str,
        email: Optional[str] = None,
        status: AffiliateStatus = AffiliateStatus.PENDING,
        use_custom_rates: bool = False,
        custom_commission_type: Optional[CommissionType] = None,
        custom_commission_value: Optional[int] = None,
    ) -> Affiliate:
        affiliate = Affiliate(
            affiliate_code=affiliate_code,
            email=email,
            status=status,
            use_custom_rates=use_custom_rates,
            custom_commission_type=custom_commission_type,
            custom_commission_value=custom_commission_value,
        )
        self.session.add(affiliate)
        await self.session.flush()
        return affiliate

    async def get_by_id(self, affiliate_id: str) -> Optional[Affiliate]:
        stmt = select(Affiliate).where(Affiliate.id == affiliate_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id_for_update(self, affiliate_id: str) -> Optional[Affiliate]:
        stmt = select(Affiliate).where(Affiliate.id == affiliate_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_code(self, affiliate_code: str) -> Optional[Affiliate]:
        stmt = select(Affiliate).where(Affiliate.affiliate_code == affiliate_code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self) -> list[Affiliate]:
        stmt = (
            select(Affiliate)
            .where(Affiliate.status == AffiliateStatus.ACTIVE)
            .order_by(Affiliate.created_at, Affiliate.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(
        self, affiliate: Affiliate, status: AffiliateStatus
    ) -> Affiliate:
        affiliate.status = status
        await self.session.flush()
        return affiliate

    async def credit_earnings(
        self,
        affiliate: Affiliate,
        commission_amount: int,
        order_amount: int,
    ) -> None:
        """Count a commission towards the affiliate's unpaid earnings."""
        affiliate.total_referrals += 1
        affiliate.total_sales += order_amount
        affiliate.total_earnings += commission_amount
        affiliate.pending_balance += commission_amount
        await self.session.flush()

    async def debit_earnings(self, affiliate: Affiliate, commission_amount: int) -> int:
        """Remove a voided commission from unpaid earnings.

        Returns the shortfall when the stored pending balance was smaller than
        the amount being removed (0 when balances line up).
        """
        shortfall = max(0, commission_amount - affiliate.pending_balance)
        affiliate.total_earnings = max(0, affiliate.total_earnings - commission_amount)
        affiliate.pending_balance = max(0, affiliate.pending_balance - commission_amount)
        await self.session.flush()
        return shortfall

    async def apply_payout(self, affiliate_id: str, amount: int) -> int:
        """Move a disbursed amount from pending to paid under a row lock.

        Must run inside the transaction that marks the payout and its referrals
        paid. Returns the pending-balance shortfall (0 when balances line up).
        """
        affiliate = await self.get_by_id_for_update(affiliate_id)
        if affiliate is None:
            raise LookupError(f"Affiliate {affiliate_id} disappeared during payout")

        shortfall = max(0, amount - affiliate.pending_balance)
        affiliate.paid_balance += amount
        affiliate.pending_balance = max(0, affiliate.pending_balance - amount)
        await self.session.flush()

        if shortfall:
            logger.warning(
                "Pending balance below payout amount affiliate_id=%s amount=%s shortfall=%s",
                affiliate_id,
                amount,
                shortfall,
                extra={
                    "affiliate_id": affiliate_id,
                    "amount_cents": amount,
                    "shortfall_cents": shortfall,
                },
            )
        return shortfall

    async def delete_cascade(self, affiliate: Affiliate) -> dict[str, int]:
        """Hard-delete an affiliate and everything hanging off it."""
        counts: dict[str, int] = {}
        for model, label in (
            (AffiliateReferral, "referrals"),
            (AffiliatePayout, "payouts"),
            (AffiliatePayoutAccount, "payout_accounts"),
        ):
            result = await self.session.execute(
                delete(model).where(model.affiliate_id == affiliate.id)
            )
            counts[label] = result.rowcount or 0
        await self.session.delete(affiliate)
        await self.session.flush()
        return counts
