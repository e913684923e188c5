from app.schemas.affiliates import (
    AffiliateBalance,
    AffiliateCreate,
    AffiliateResponse,
    AffiliateStatusUpdate,
    BalanceDriftReport,
    PayoutAccountResponse,
    PayoutAccountUpsert,
)
from app.schemas.commissions import (
    ApproveRequest,
    AutoApproveResult,
    BulkApproveRequest,
    BulkApproveResult,
    CommissionCreate,
    CommissionResponse,
    CouponRedemption,
    ItemError,
    ReviewRequest,
    VoidRequest,
)
from app.schemas.common import ErrorDetail, ErrorResponse
from app.schemas.jobs import (
    JobInfo,
    JobResult,
    JobRunOutcome,
    JobRunRequest,
    JobRunResponse,
    JobsStatus,
)
from app.schemas.payouts import (
    EligibilityReport,
    EligibleAffiliate,
    IneligibleAffiliate,
    ManualPayoutCreate,
    PayoutBatchSummary,
    PayoutMetadata,
    PayoutResponse,
    PayoutResult,
    PayoutRunRequest,
)
from app.schemas.settings import AffiliateSettingsData, AffiliateSettingsUpdate

__all__ = [
    "AffiliateBalance",
    "AffiliateCreate",
    "AffiliateResponse",
    "AffiliateSettingsData",
    "AffiliateSettingsUpdate",
    "AffiliateStatusUpdate",
    "ApproveRequest",
    "AutoApproveResult",
    "BalanceDriftReport",
    "BulkApproveRequest",
    "BulkApproveResult",
    "CommissionCreate",
    "CommissionResponse",
    "CouponRedemption",
    "EligibilityReport",
    "EligibleAffiliate",
    "ErrorDetail",
    "ErrorResponse",
    "IneligibleAffiliate",
    "ItemError",
    "JobInfo",
    "JobResult",
    "JobRunOutcome",
    "JobRunRequest",
    "JobRunResponse",
    "JobsStatus",
    "ManualPayoutCreate",
    "PayoutAccountResponse",
    "PayoutAccountUpsert",
    "PayoutBatchSummary",
    "PayoutMetadata",
    "PayoutResponse",
    "PayoutResult",
    "PayoutRunRequest",
    "ReviewRequest",
    "VoidRequest",
]
