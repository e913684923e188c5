from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import PaymentMethod, PayoutStatus
from app.db.models import Affiliate, AffiliatePayout


class PayoutRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_payout(
        self,
        affiliate_id: str,
        amount: int,
        payment_method: PaymentMethod = PaymentMethod.STRIPE_CONNECT,
        status: PayoutStatus = PayoutStatus.PENDING,
        payout_batch_id: Optional[str] = None,
        payment_details: Optional[str] = None,
        notes: Optional[str] = None,
        processed_by: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> AffiliatePayout:
        payout = AffiliatePayout(
            affiliate_id=affiliate_id,
            amount=amount,
            payment_method=payment_method,
            status=status,
            payout_batch_id=payout_batch_id,
            payment_details=payment_details,
            notes=notes,
            processed_by=processed_by,
            processed_at=processed_at,
        )
        self.session.add(payout)
        await self.session.flush()
        return payout

    async def get_by_id(self, payout_id: str) -> Optional[AffiliatePayout]:
        stmt = select(AffiliatePayout).where(AffiliatePayout.id == payout_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id_for_update(self, payout_id: str) -> Optional[AffiliatePayout]:
        stmt = (
            select(AffiliatePayout)
            .where(AffiliatePayout.id == payout_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_batch(
        self, affiliate_id: str, payout_batch_id: str
    ) -> Optional[AffiliatePayout]:
        stmt = (
            select(AffiliatePayout)
            .where(AffiliatePayout.affiliate_id == affiliate_id)
            .where(AffiliatePayout.payout_batch_id == payout_batch_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_affiliate(self, affiliate_id: str) -> list[AffiliatePayout]:
        stmt = (
            select(AffiliatePayout)
            .where(AffiliatePayout.affiliate_id == affiliate_id)
            .order_by(AffiliatePayout.requested_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_paid(
        self,
        payout: AffiliatePayout,
        transfer_id: str,
        processed_at: datetime,
        processed_by: Optional[str] = None,
    ) -> AffiliatePayout:
        payout.status = PayoutStatus.PAID
        payout.transfer_id = transfer_id
        payout.processed_at = processed_at
        payout.processed_by = processed_by
        await self.session.flush()
        return payout

    async def list_paid_for_batch(
        self, payout_batch_id: str
    ) -> list[tuple[AffiliatePayout, str]]:
        """Paid payouts of a batch together with the affiliate code."""
        stmt = (
            select(AffiliatePayout, Affiliate.affiliate_code)
            .join(Affiliate, Affiliate.id == AffiliatePayout.affiliate_id)
            .where(AffiliatePayout.payout_batch_id == payout_batch_id)
            .where(AffiliatePayout.status == PayoutStatus.PAID)
            .order_by(AffiliatePayout.processed_at, AffiliatePayout.id)
        )
        result = await self.session.execute(stmt)
        return [(payout, code) for payout, code in result.all()]
