from app.db.repositories.affiliate_repository import AffiliateRepository
from app.db.repositories.audit_log_repository import AuditLogRepository
from app.db.repositories.job_run_repository import JobRunRepository
from app.db.repositories.payout_account_repository import PayoutAccountRepository
from app.db.repositories.payout_repository import PayoutRepository
from app.db.repositories.referral_repository import ReferralRepository
from app.db.repositories.settings_repository import SettingsRepository

__all__ = [
    "AffiliateRepository",
    "AuditLogRepository",
    "JobRunRepository",
    "PayoutAccountRepository",
    "PayoutRepository",
    "ReferralRepository",
    "SettingsRepository",
]
