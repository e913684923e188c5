import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import IneligibilityReason
from app.db.models import Affiliate, AffiliatePayoutAccount
from app.db.repositories import (
    AffiliateRepository,
    PayoutAccountRepository,
    ReferralRepository,
)
from app.schemas.payouts import (
    EligibilityReport,
    EligibleAffiliate,
    IneligibleAffiliate,
)

logger = logging.getLogger(__name__)


class PayoutEligibilityEvaluator:
    """Splits active affiliates into those that can be paid now and those that can't.

    Checks run in a fixed order and the first failing one is the only reason
    reported: account connectivity and configuration come before the minimum
    payout threshold. Affiliates with nothing approved and unpaid are left out
    of both lists.
    """

    def __init__(
        self,
        session: AsyncSession,
        supported_country: str = "US",
        supported_currency: str = "usd",
    ) -> None:
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.account_repo = PayoutAccountRepository(session)
        self.supported_country = supported_country
        self.supported_currency = supported_currency

    async def compute_eligible_payouts(self, minimum_payout: int) -> EligibilityReport:
        report = EligibilityReport(minimum_payout=minimum_payout)

        for affiliate in await self.affiliate_repo.list_active():
            referrals = await self.referral_repo.list_approved_unpaid(affiliate.id)
            referral_amounts = {r.id: r.commission_amount for r in referrals}
            total_amount = sum(referral_amounts.values())
            if total_amount == 0:
                continue

            account = await self.account_repo.get_by_affiliate_id(affiliate.id)
            problem = self._check(account, total_amount, minimum_payout)
            if problem is not None:
                reason, detail = problem
                report.ineligible.append(
                    IneligibleAffiliate(
                        affiliate_id=affiliate.id,
                        affiliate_code=affiliate.affiliate_code,
                        reason=reason,
                        detail=detail,
                        pending_amount=total_amount,
                    )
                )
                continue

            report.eligible.append(self._eligible(affiliate, account, referral_amounts))

        logger.info(
            "Eligibility computed eligible=%s ineligible=%s minimum_payout=%s",
            len(report.eligible),
            len(report.ineligible),
            minimum_payout,
            extra={
                "eligible": len(report.eligible),
                "ineligible": len(report.ineligible),
                "minimum_payout": minimum_payout,
            },
        )
        return report

    def _check(
        self,
        account: Optional[AffiliatePayoutAccount],
        total_amount: int,
        minimum_payout: int,
    ) -> Optional[tuple[IneligibilityReason, str]]:
        if account is None:
            return (
                IneligibilityReason.NO_PAYOUT_ACCOUNT,
                "Affiliate has not connected a payout account",
            )
        if not account.payouts_enabled:
            return (
                IneligibilityReason.PAYOUTS_NOT_ENABLED,
                f"Payouts are not enabled on account {account.provider_account_id}",
            )
        if not account.details_submitted:
            return (
                IneligibilityReason.DETAILS_NOT_SUBMITTED,
                f"Account {account.provider_account_id} has not submitted its details",
            )
        if account.country.upper() != self.supported_country.upper():
            return (
                IneligibilityReason.COUNTRY_NOT_SUPPORTED,
                f"Account country {account.country} is not supported "
                f"(expected {self.supported_country})",
            )
        if account.currency.lower() != self.supported_currency.lower():
            return (
                IneligibilityReason.CURRENCY_NOT_SUPPORTED,
                f"Account currency {account.currency} is not supported "
                f"(expected {self.supported_currency})",
            )
        if total_amount < minimum_payout:
            return (
                IneligibilityReason.BELOW_MINIMUM_PAYOUT,
                f"Approved balance {total_amount} is below the minimum payout "
                f"of {minimum_payout}",
            )
        return None

    def _eligible(
        self,
        affiliate: Affiliate,
        account: AffiliatePayoutAccount,
        referral_amounts: dict[str, int],
    ) -> EligibleAffiliate:
        return EligibleAffiliate(
            affiliate_id=affiliate.id,
            affiliate_code=affiliate.affiliate_code,
            destination_account=account.provider_account_id,
            referral_amounts=referral_amounts,
            total_amount=sum(referral_amounts.values()),
        )
