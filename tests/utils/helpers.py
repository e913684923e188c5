from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import select

from app.core.enums import AffiliateStatus, ReferralStatus
from app.db.base import utcnow
from app.db.models import Affiliate, AffiliatePayout, AffiliateReferral, AuditLog
from app.db.repositories import (
    AffiliateRepository,
    PayoutAccountRepository,
    ReferralRepository,
    SettingsRepository,
)
from app.db.session import AsyncSessionLocal


async def seed_affiliate(
    affiliate_code: Optional[str] = None,
    email: Optional[str] = None,
    status: AffiliateStatus = AffiliateStatus.ACTIVE,
    with_account: bool = True,
    payouts_enabled: bool = True,
    details_submitted: bool = True,
    country: str = "US",
    currency: str = "usd",
) -> str:
    """Create an affiliate (and by default a ready payout account). Returns its id."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            affiliate = await AffiliateRepository(session).create(
                affiliate_code=affiliate_code or f"AFF{uuid4().hex[:6].upper()}",
                email=email,
                status=status,
            )
            if with_account:
                await PayoutAccountRepository(session).upsert(
                    affiliate_id=affiliate.id,
                    provider_account_id=f"acct_{affiliate.affiliate_code.lower()}",
                    payouts_enabled=payouts_enabled,
                    details_submitted=details_submitted,
                    country=country,
                    currency=currency,
                )
            return affiliate.id


async def seed_referral(
    affiliate_id: str,
    commission_amount: int,
    status: ReferralStatus = ReferralStatus.APPROVED,
    order_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> str:
    """Insert a referral and count it in the stored balances like the state machine does."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            referral_repo = ReferralRepository(session)
            referral = await referral_repo.create_referral(
                affiliate_id=affiliate_id,
                order_id=order_id or f"order_{uuid4().hex[:10]}",
                order_amount=commission_amount * 10,
                commission_rate=10,
                commission_amount=commission_amount,
                status=(
                    ReferralStatus.APPROVED
                    if status == ReferralStatus.PAID
                    else status
                ),
                created_at=created_at,
            )
            if status == ReferralStatus.PAID:
                await referral_repo.mark_paid([referral.id], utcnow())
            if status in (ReferralStatus.PENDING, ReferralStatus.APPROVED):
                repo = AffiliateRepository(session)
                affiliate = await repo.get_by_id(affiliate_id)
                await repo.credit_earnings(
                    affiliate, commission_amount, commission_amount * 10
                )
            return referral.id


async def set_program_settings(**fields) -> None:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            await SettingsRepository(session).upsert_main(**fields)


async def load_affiliate(affiliate_id: str) -> Affiliate:
    async with AsyncSessionLocal() as session:
        return await AffiliateRepository(session).get_by_id(affiliate_id)


async def load_referral(referral_id: str) -> AffiliateReferral:
    async with AsyncSessionLocal() as session:
        return await ReferralRepository(session).get_by_id(referral_id)


async def load_referrals(affiliate_id: str) -> list[AffiliateReferral]:
    async with AsyncSessionLocal() as session:
        return await ReferralRepository(session).list_for_affiliate(affiliate_id)


async def load_payouts(affiliate_id: str) -> list[AffiliatePayout]:
    async with AsyncSessionLocal() as session:
        stmt = select(AffiliatePayout).where(
            AffiliatePayout.affiliate_id == affiliate_id
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def load_audit_logs(action: str) -> list[AuditLog]:
    async with AsyncSessionLocal() as session:
        stmt = select(AuditLog).where(AuditLog.action == action)
        result = await session.execute(stmt)
        return list(result.scalars().all())
