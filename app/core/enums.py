from enum import Enum


class AffiliateStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    VOID = "void"
    FLAGGED = "flagged"


class FlagReason(str, Enum):
    SELF_REFERRAL = "self_referral"
    COUPON_ABUSE = "coupon_abuse"
    SUSPICIOUS_PATTERN = "suspicious_pattern"


class CommissionType(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    STRIPE_CONNECT = "stripe_connect"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    OTHER = "other"


class PayoutResultStatus(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    SKIPPED = "skipped"
    ALREADY_PAID = "already_paid"


class IneligibilityReason(str, Enum):
    NO_PAYOUT_ACCOUNT = "No payout account connected"
    PAYOUTS_NOT_ENABLED = "payouts not enabled"
    DETAILS_NOT_SUBMITTED = "account details not submitted"
    COUNTRY_NOT_SUPPORTED = "country not supported"
    CURRENCY_NOT_SUPPORTED = "currency not supported"
    BELOW_MINIMUM_PAYOUT = "below minimum payout"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AlertCategory(str, Enum):
    PAYOUT_ERROR = "payout_error"
    LEDGER_DRIFT = "ledger_drift"
    SYSTEM_ERROR = "system_error"


class JobRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
