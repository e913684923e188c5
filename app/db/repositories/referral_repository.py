from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FlagReason, ReferralStatus
from app.db.models import AffiliateReferral


class ReferralRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_referral(
        self,
        affiliate_id: str,
        order_id: str,
        order_amount: int,
        commission_rate: int,
        commission_amount: int,
        status: ReferralStatus = ReferralStatus.PENDING,
        flag_reason: Optional[FlagReason] = None,
        flag_details: Optional[str] = None,
        flagged_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> AffiliateReferral:
        referral_kwargs: dict = {
            "affiliate_id": affiliate_id,
            "order_id": order_id,
            "order_amount": order_amount,
            "commission_rate": commission_rate,
            "commission_amount": commission_amount,
            "status": status,
            "flag_reason": flag_reason,
            "flag_details": flag_details,
            "flagged_at": flagged_at,
        }
        if created_at is not None:
            referral_kwargs["created_at"] = created_at

        referral = AffiliateReferral(**referral_kwargs)
        self.session.add(referral)
        await self.session.flush()
        return referral

    async def get_by_id(self, referral_id: str) -> Optional[AffiliateReferral]:
        stmt = select(AffiliateReferral).where(AffiliateReferral.id == referral_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id_for_update(
        self, referral_id: str
    ) -> Optional[AffiliateReferral]:
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.id == referral_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_order_id(self, order_id: str) -> Optional[AffiliateReferral]:
        stmt = select(AffiliateReferral).where(AffiliateReferral.order_id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_affiliate(self, affiliate_id: str) -> list[AffiliateReferral]:
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .order_by(AffiliateReferral.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_approved_unpaid(self, affiliate_id: str) -> list[AffiliateReferral]:
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .where(AffiliateReferral.status == ReferralStatus.APPROVED)
            .where(AffiliateReferral.paid_at.is_(None))
            .order_by(AffiliateReferral.created_at, AffiliateReferral.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_pending_ids_created_before(self, cutoff: datetime) -> list[str]:
        stmt = (
            select(AffiliateReferral.id)
            .where(AffiliateReferral.status == ReferralStatus.PENDING)
            .where(AffiliateReferral.created_at < cutoff)
            .order_by(AffiliateReferral.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_flagged(self) -> list[AffiliateReferral]:
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.status == ReferralStatus.FLAGGED)
            .order_by(AffiliateReferral.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_paid(self, referral_ids: list[str], paid_at: datetime) -> int:
        """Flip approved referrals to paid. Returns how many rows moved."""
        if not referral_ids:
            return 0
        stmt = (
            update(AffiliateReferral)
            .where(AffiliateReferral.id.in_(referral_ids))
            .where(AffiliateReferral.status == ReferralStatus.APPROVED)
            .values(status=ReferralStatus.PAID, paid_at=paid_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def sum_by_status(self, affiliate_id: str) -> dict[str, int]:
        stmt = (
            select(
                AffiliateReferral.status,
                func.coalesce(func.sum(AffiliateReferral.commission_amount), 0).label(
                    "amount"
                ),
            )
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .group_by(AffiliateReferral.status)
        )
        result = await self.session.execute(stmt)
        return {str(row.status): int(row.amount) for row in result.fetchall()}
