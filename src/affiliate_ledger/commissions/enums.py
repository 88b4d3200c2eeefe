from __future__ import annotations

from enum import StrEnum


class CommissionStatus(StrEnum):
    """Maturity of a commission from accrual to payout."""

    PENDING = "pending"  # inside the refund-protection window
    CONFIRMED = "confirmed"  # withdrawable
    PAID = "paid"
    CANCELLED = "cancelled"

