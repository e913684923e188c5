from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import FlagReason, ReferralStatus


class CouponRedemption(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    blocks_affiliate_commission: bool = False


class CommissionCreate(BaseModel):
    affiliate_code: str = Field(..., min_length=1, max_length=50)
    order_id: str = Field(..., min_length=1, max_length=100)
    order_amount: int = Field(..., ge=0)
    commission_amount: Optional[int] = Field(default=None, ge=0)
    customer_email: Optional[str] = None
    coupons: list[CouponRedemption] = Field(default_factory=list)


class CommissionResponse(BaseModel):
    id: str
    affiliate_id: str
    order_id: str
    order_amount: int
    commission_rate: int
    commission_amount: int
    status: ReferralStatus
    flag_reason: Optional[FlagReason] = None
    flag_details: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    idempotent: bool = False

    model_config = ConfigDict(from_attributes=True)


class ApproveRequest(BaseModel):
    notes: Optional[str] = None


class VoidRequest(BaseModel):
    reason: str = ""


class ReviewRequest(BaseModel):
    notes: str = ""


class BulkApproveRequest(BaseModel):
    referral_ids: list[str] = Field(..., min_length=1)


class ItemError(BaseModel):
    referral_id: str
    error: str


class BulkApproveResult(BaseModel):
    approved: int
    failed: int
    errors: list[ItemError] = Field(default_factory=list)


class AutoApproveResult(BaseModel):
    approved: int
    errors: list[ItemError] = Field(default_factory=list)
