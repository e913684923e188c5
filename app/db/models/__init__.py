from app.db.models.affiliate import Affiliate
from app.db.models.affiliate_payout import AffiliatePayout
from app.db.models.affiliate_payout_account import AffiliatePayoutAccount
from app.db.models.affiliate_referral import AffiliateReferral
from app.db.models.affiliate_settings import AffiliateSettings
from app.db.models.audit_log import AuditLog
from app.db.models.job_run import JobRun

__all__ = [
    "Affiliate",
    "AffiliatePayout",
    "AffiliatePayoutAccount",
    "AffiliateReferral",
    "AffiliateSettings",
    "AuditLog",
    "JobRun",
]
