from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.enums import CommissionType
from app.db.base import Base, utcnow


class AffiliateSettings(Base):
    """Program-wide settings. Single row keyed 'main'."""

    __tablename__ = "affiliate_settings"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="main")
    minimum_payout: Mapped[int] = mapped_column(
        BigInteger, server_default="5000", default=5000, nullable=False
    )
    approval_days: Mapped[int] = mapped_column(
        Integer, server_default="14", default=14, nullable=False
    )
    default_commission_type: Mapped[CommissionType] = mapped_column(
        String(10),
        server_default="PERCENT",
        default=CommissionType.PERCENT,
        nullable=False,
    )
    default_commission_value: Mapped[int] = mapped_column(
        Integer, server_default="10", default=10, nullable=False
    )
    program_active: Mapped[bool] = mapped_column(
        Boolean, server_default="true", default=True, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
