from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.enums import FlagReason, ReferralStatus
from app.db.base import Base, utcnow


class AffiliateReferral(Base):
    """Commission ledger entry for one order. Status only moves forward."""

    __tablename__ = "affiliate_referrals"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    affiliate_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    order_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[ReferralStatus] = mapped_column(
        String(20),
        server_default="pending",
        default=ReferralStatus.PENDING,
        nullable=False,
    )
    flag_reason: Mapped[Optional[FlagReason]] = mapped_column(String(50), nullable=True)
    flag_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    flagged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        nullable=False,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("commission_amount >= 0", name="non_negative_commission"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'paid', 'void', 'flagged')",
            name="valid_referral_status",
        ),
        CheckConstraint(
            "(status = 'paid' AND paid_at IS NOT NULL) "
            "OR (status != 'paid' AND paid_at IS NULL)",
            name="referral_paid_at_consistency",
        ),
        Index("idx_referrals_affiliate_status", "affiliate_id", "status"),
        Index("idx_referrals_status_created", "status", "created_at"),
    )
