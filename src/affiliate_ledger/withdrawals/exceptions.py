"""Withdrawal module exceptions."""

from __future__ import annotations

from affiliate_ledger.commissions.exceptions import (
    InvalidStateTransitionError,
    LedgerError,
)

__all__ = [
    "WithdrawalError",
    "InsufficientBalanceError",
    "WithdrawalAmountError",
    "WithdrawalNotFoundError",
    "InvalidStateTransitionError",
]


class WithdrawalError(LedgerError):
    """Base exception for the withdrawal workflow."""


class InsufficientBalanceError(WithdrawalError):
    """Raised when withdrawal amount exceeds available balance."""


class WithdrawalAmountError(WithdrawalError):
    """Raised when the requested amount is not positive or below the minimum."""


class WithdrawalNotFoundError(WithdrawalError):
    """Raised when a withdrawal request is not found."""
