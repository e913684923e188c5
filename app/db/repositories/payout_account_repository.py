from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AffiliatePayoutAccount


class PayoutAccountRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_affiliate_id(
        self, affiliate_id: str
    ) -> Optional[AffiliatePayoutAccount]:
        stmt = select(AffiliatePayoutAccount).where(
            AffiliatePayoutAccount.affiliate_id == affiliate_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        affiliate_id: str,
        provider_account_id: str,
        payouts_enabled: bool,
        details_submitted: bool,
        country: str,
        currency: str,
    ) -> tuple[AffiliatePayoutAccount, bool]:
        account = await self.get_by_affiliate_id(affiliate_id)
        created = account is None
        if account is None:
            account = AffiliatePayoutAccount(affiliate_id=affiliate_id)
            self.session.add(account)

        account.provider_account_id = provider_account_id
        account.payouts_enabled = payouts_enabled
        account.details_submitted = details_submitted
        account.country = country
        account.currency = currency
        await self.session.flush()
        return account, created
