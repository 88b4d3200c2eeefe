from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.core.constants import REFERRAL_CODE_LENGTH
from affiliate_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from affiliate_ledger.db.types import GUID


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Marketplace account as seen by the affiliate ledger.

    Carries no balance: balances are always derived from commission rows.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "referrer_id IS NULL OR referrer_id <> id", name="no_self_referral"
        ),
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    referral_code: Mapped[str] = mapped_column(
        String(REFERRAL_CODE_LENGTH), nullable=False, unique=True
    )
    referrer_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
