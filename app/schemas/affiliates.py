from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.enums import AffiliateStatus, CommissionType
from app.schemas.common import response_meta


class AffiliateCreate(BaseModel):
    affiliate_code: str = Field(..., min_length=2, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    status: AffiliateStatus = AffiliateStatus.PENDING
    use_custom_rates: bool = False
    custom_commission_type: Optional[CommissionType] = None
    custom_commission_value: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_custom_rate(self) -> "AffiliateCreate":
        if self.use_custom_rates and (
            self.custom_commission_type is None
            or self.custom_commission_value is None
        ):
            raise ValueError(
                "custom_commission_type and custom_commission_value are required "
                "when use_custom_rates is set"
            )
        return self


class AffiliateStatusUpdate(BaseModel):
    status: AffiliateStatus


class AffiliateResponse(BaseModel):
    id: str
    affiliate_code: str
    email: Optional[str] = None
    status: AffiliateStatus
    total_earnings: int
    pending_balance: int
    paid_balance: int
    total_referrals: int
    total_sales: int
    use_custom_rates: bool
    custom_commission_type: Optional[CommissionType] = None
    custom_commission_value: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayoutAccountUpsert(BaseModel):
    provider_account_id: str = Field(..., min_length=1, max_length=100)
    payouts_enabled: bool = False
    details_submitted: bool = False
    country: str = Field(default="US", pattern=r"^[A-Z]{2}$")
    currency: str = Field(default="usd", pattern=r"^[a-z]{3}$")


class PayoutAccountResponse(BaseModel):
    id: str
    affiliate_id: str
    provider_account_id: str
    payouts_enabled: bool
    details_submitted: bool
    country: str
    currency: str

    model_config = ConfigDict(from_attributes=True)


class AffiliateBalance(BaseModel):
    affiliate_id: str
    pending_balance: int
    approved_balance: int
    paid_balance: int
    total_earnings: int
    derived_pending_cents: int
    derived_approved_cents: int
    meta: dict = Field(default_factory=response_meta)


class BalanceDriftReport(BaseModel):
    affiliate_id: str
    stored_pending_cents: int
    derived_pending_cents: int
    drift_cents: int
    in_sync: bool
