from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.enums import PaymentMethod, PayoutStatus
from app.db.base import Base, utcnow


class AffiliatePayout(Base):
    """Disbursement record. Status lifecycle: pending → paid (or failed/rejected).

    For batch payouts, notes holds the serialized PayoutMetadata: the exact
    referral set and amount this record stands for.
    """

    __tablename__ = "affiliate_payouts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    affiliate_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(30),
        server_default="stripe_connect",
        default=PaymentMethod.STRIPE_CONNECT,
        nullable=False,
    )
    payment_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[PayoutStatus] = mapped_column(
        String(20),
        server_default="pending",
        default=PayoutStatus.PENDING,
        nullable=False,
    )
    payout_batch_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        nullable=False,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_payout_amount"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'rejected')",
            name="valid_payout_status",
        ),
        UniqueConstraint(
            "payout_batch_id",
            "affiliate_id",
            name="uq_payout_batch_affiliate",
        ),
        Index("idx_payouts_affiliate_status", "affiliate_id", "status"),
    )
