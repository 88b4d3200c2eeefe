from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from affiliate_ledger.db.types import (
    GUID,
    JSONType,
    Money,
    Rate,
    UTCDateTime,
    enum_column_type,
)

from .enums import TERMINAL_WITHDRAWAL_STATUSES, WithdrawalMethod, WithdrawalStatus


class Withdrawal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A batch cash-out request backed by reserved commissions."""

    __tablename__ = "withdrawals"
    __table_args__ = (
        Index("ix_withdrawals_user_id_status", "user_id", "status"),
        Index("ix_withdrawals_status", "status"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    requested_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    fee_rate: Mapped[Decimal] = mapped_column(Rate(), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    method: Mapped[WithdrawalMethod] = mapped_column(
        enum_column_type(WithdrawalMethod, "withdrawal_method"),
        nullable=False,
    )
    account_info: Mapped[dict[str, Any]] = mapped_column(
        JSONType(), nullable=False, default=dict
    )
    status: Mapped[WithdrawalStatus] = mapped_column(
        enum_column_type(WithdrawalStatus, "withdrawal_status"),
        nullable=False,
        default=WithdrawalStatus.PENDING,
    )
    # Frozen at request time; survives the release of a rejected request.
    commission_ids: Mapped[list[str]] = mapped_column(
        JSONType(), nullable=False, default=list
    )
    remark: Mapped[str | None] = mapped_column(String(500))
    processing_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    resolved_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WITHDRAWAL_STATUSES

    @property
    def reserved_commission_ids(self) -> list[uuid.UUID]:
        return [uuid.UUID(value) for value in self.commission_ids]
