from dataclasses import dataclass
from typing import Optional

from app.core.enums import CommissionType, FlagReason
from app.schemas.commissions import CouponRedemption


@dataclass(frozen=True)
class FraudCheckResult:
    is_flagged: bool
    reason: Optional[FlagReason] = None
    details: Optional[str] = None


def calculate_commission(
    order_amount: int, commission_type: CommissionType, value: int
) -> int:
    """Commission in cents for an order.

    PERCENT takes ``value`` percent of the order, rounded down. FIXED pays
    ``value`` cents but never more than the order itself.
    """
    if order_amount <= 0:
        return 0
    if commission_type == CommissionType.FIXED:
        return min(order_amount, value)
    return order_amount * value // 100


def check_for_fraud(
    affiliate_email: Optional[str],
    customer_email: Optional[str],
    coupons: list[CouponRedemption],
) -> FraudCheckResult:
    if (
        affiliate_email
        and customer_email
        and affiliate_email.strip().lower() == customer_email.strip().lower()
    ):
        return FraudCheckResult(
            is_flagged=True,
            reason=FlagReason.SELF_REFERRAL,
            details=f"Customer email {customer_email} matches affiliate owner email",
        )

    for coupon in coupons:
        if coupon.blocks_affiliate_commission:
            return FraudCheckResult(
                is_flagged=True,
                reason=FlagReason.COUPON_ABUSE,
                details=(
                    f'Order used coupon "{coupon.code}" which blocks affiliate '
                    "commission"
                ),
            )

    return FraudCheckResult(is_flagged=False)
