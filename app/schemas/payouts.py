from collections import Counter
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.enums import (
    IneligibilityReason,
    PaymentMethod,
    PayoutResultStatus,
    PayoutStatus,
)

PAYOUT_METADATA_VERSION = 1


class PayoutMetadata(BaseModel):
    """Referral set and amount a batch payout record stands for.

    Stored as JSON in affiliate_payouts.notes. A pending payout is resumed
    from this record only, never from current balances.
    """

    schema_version: Literal[1] = PAYOUT_METADATA_VERSION
    referral_ids: list[str] = Field(..., min_length=1)
    referral_amounts: dict[str, int]
    created_amount: int = Field(..., gt=0)
    period_start: datetime
    period_end: datetime

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def check_consistency(self) -> "PayoutMetadata":
        duplicates = [rid for rid, n in Counter(self.referral_ids).items() if n > 1]
        if duplicates:
            raise ValueError(f"duplicate referral ids: {duplicates}")
        if set(self.referral_amounts) != set(self.referral_ids):
            raise ValueError("referral_amounts keys do not match referral_ids")
        # Zero-cent commissions ride along so they are settled with the payout
        if any(amount < 0 for amount in self.referral_amounts.values()):
            raise ValueError("referral amounts must not be negative")
        if sum(self.referral_amounts.values()) != self.created_amount:
            raise ValueError("referral amounts do not add up to created_amount")
        return self


class EligibleAffiliate(BaseModel):
    affiliate_id: str
    affiliate_code: str
    destination_account: str
    referral_amounts: dict[str, int]
    total_amount: int


class IneligibleAffiliate(BaseModel):
    affiliate_id: str
    affiliate_code: str
    reason: IneligibilityReason
    detail: str
    pending_amount: int


class EligibilityReport(BaseModel):
    minimum_payout: int
    eligible: list[EligibleAffiliate] = Field(default_factory=list)
    ineligible: list[IneligibleAffiliate] = Field(default_factory=list)


class PayoutResult(BaseModel):
    affiliate_id: str
    affiliate_code: str
    status: PayoutResultStatus
    amount: int = 0
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    detail: Optional[str] = None


class PayoutBatchSummary(BaseModel):
    batch_id: str
    period_start: datetime
    period_end: datetime
    dry_run: bool
    timestamp: datetime
    total_affiliates: int
    eligible_affiliates: int
    ineligible_affiliates: int
    successful_payouts: int
    failed_payouts: int
    skipped_payouts: int
    already_paid_payouts: int
    total_amount_paid: int
    minimum_payout: int
    results: list[PayoutResult] = Field(default_factory=list)


class PayoutRunRequest(BaseModel):
    dry_run: bool = True
    # Claim a fresh run key instead of the weekly one, for retries
    force_new_key: bool = False


class ManualPayoutCreate(BaseModel):
    amount: int = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    payment_details: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None


class PayoutResponse(BaseModel):
    id: str
    affiliate_id: str
    amount: int
    payment_method: PaymentMethod
    status: PayoutStatus
    payout_batch_id: Optional[str] = None
    transfer_id: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
