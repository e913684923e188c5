from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow


class AffiliatePayoutAccount(Base):
    """Connected payout-provider account (e.g. Stripe Connect) of an affiliate."""

    __tablename__ = "affiliate_payout_accounts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    affiliate_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    provider_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
    details_submitted: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
    country: Mapped[str] = mapped_column(
        String(2), server_default="US", default="US", nullable=False
    )
    currency: Mapped[str] = mapped_column(
        String(3), server_default="usd", default="usd", nullable=False
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

    affiliate = relationship("Affiliate", back_populates="payout_account")
