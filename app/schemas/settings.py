from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import CommissionType


class AffiliateSettingsData(BaseModel):
    """Snapshot of program settings handed out by the settings provider."""

    minimum_payout: int
    approval_days: int
    default_commission_type: CommissionType
    default_commission_value: int
    program_active: bool = True
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class AffiliateSettingsUpdate(BaseModel):
    minimum_payout: Optional[int] = Field(default=None, ge=0)
    approval_days: Optional[int] = Field(default=None, ge=0)
    default_commission_type: Optional[CommissionType] = None
    default_commission_value: Optional[int] = Field(default=None, ge=0)
    program_active: Optional[bool] = None
