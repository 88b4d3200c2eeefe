from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from affiliate_ledger.db.types import (
    GUID,
    Money,
    Rate,
    UTCDateTime,
    enum_column_type,
)

from .enums import CommissionStatus


class Commission(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One beneficiary's share of one paid order at one referral level."""

    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint(
            "order_id", "to_user_id", "level", name="uq_commissions_accrual_key"
        ),
        CheckConstraint("level IN (1, 2)", name="level_range"),
        # SQLite keeps Money as TEXT, which never compares below a number.
        CheckConstraint("CAST(amount AS NUMERIC) >= 0", name="amount_non_negative"),
        Index("ix_commissions_beneficiary_status", "to_user_id", "status"),
        Index("ix_commissions_withdrawal_id", "withdrawal_id"),
    )

    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    from_user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    to_user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    rate: Mapped[Decimal] = mapped_column(Rate(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        enum_column_type(CommissionStatus, "commission_status"),
        nullable=False,
        default=CommissionStatus.PENDING,
    )
    withdrawal_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(),
        ForeignKey("withdrawals.id", ondelete="RESTRICT"),
        nullable=True,
    )
    confirmed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    paid_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    cancelled_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
