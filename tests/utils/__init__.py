from tests.utils.factories import AffiliateFactory, CommissionFactory
from tests.utils.helpers import (
    load_affiliate,
    load_audit_logs,
    load_payouts,
    load_referral,
    load_referrals,
    seed_affiliate,
    seed_referral,
    set_program_settings,
)

__all__ = [
    "AffiliateFactory",
    "CommissionFactory",
    "load_affiliate",
    "load_audit_logs",
    "load_payouts",
    "load_referral",
    "load_referrals",
    "seed_affiliate",
    "seed_referral",
    "set_program_settings",
]
