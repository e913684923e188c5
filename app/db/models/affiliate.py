from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.enums import AffiliateStatus, CommissionType
from app.db.base import Base, utcnow


class Affiliate(Base):
    """Referral partner with running balances.

    pending_balance holds earned, unpaid commission (pending + approved).
    paid_balance only grows, and only when a payout commits.
    """

    __tablename__ = "affiliates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    affiliate_code: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[AffiliateStatus] = mapped_column(
        String(20),
        server_default="pending",
        default=AffiliateStatus.PENDING,
        nullable=False,
    )
    total_earnings: Mapped[int] = mapped_column(
        BigInteger, server_default="0", default=0, nullable=False
    )
    pending_balance: Mapped[int] = mapped_column(
        BigInteger, server_default="0", default=0, nullable=False
    )
    paid_balance: Mapped[int] = mapped_column(
        BigInteger, server_default="0", default=0, nullable=False
    )
    total_referrals: Mapped[int] = mapped_column(
        Integer, server_default="0", default=0, nullable=False
    )
    total_sales: Mapped[int] = mapped_column(
        BigInteger, server_default="0", default=0, nullable=False
    )
    use_custom_rates: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
    custom_commission_type: Mapped[Optional[CommissionType]] = mapped_column(
        String(10), nullable=True
    )
    custom_commission_value: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    payout_account = relationship(
        "AffiliatePayoutAccount",
        back_populates="affiliate",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'suspended')",
            name="valid_affiliate_status",
        ),
        CheckConstraint("paid_balance >= 0", name="non_negative_paid_balance"),
        CheckConstraint("pending_balance >= 0", name="non_negative_pending_balance"),
        UniqueConstraint("affiliate_code", name="uq_affiliates_affiliate_code"),
        Index("idx_affiliates_status", "status"),
    )
