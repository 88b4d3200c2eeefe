from __future__ import annotations

from enum import StrEnum


class WithdrawalStatus(StrEnum):
    """Withdrawal request status."""

    PENDING = "pending"
    PROCESSING = "processing"  # operator is executing the payout manually
    COMPLETED = "completed"
    REJECTED = "rejected"


class WithdrawalMethod(StrEnum):
    """Payout rail chosen by the user."""

    BANK_CARD = "bank_card"
    ALIPAY = "alipay"
    WECHAT_PAY = "wechat_pay"


class WithdrawalOutcome(StrEnum):
    """Operator decision on a withdrawal."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> WithdrawalStatus:
        if self is WithdrawalOutcome.APPROVE:
            return WithdrawalStatus.COMPLETED
        return WithdrawalStatus.REJECTED


ACTIVE_WITHDRAWAL_STATUSES = frozenset(
    {WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING}
)
TERMINAL_WITHDRAWAL_STATUSES = frozenset(
    {WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED}
)
