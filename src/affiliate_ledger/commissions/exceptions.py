"""Commission ledger exceptions."""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base class for affiliate ledger errors."""


class CommissionNotFoundError(LedgerError):
    """Raised when a commission id does not exist."""


class UnknownCommissionLevelError(LedgerError):
    """Raised when no rate is configured for a referral level."""


class InvalidStateTransitionError(LedgerError):
    """Raised when a record is not in a state that allows the operation."""


class DuplicateAccrualError(LedgerError):
    """Raised internally when an (order, beneficiary, level) row already exists.

    Never surfaced to callers: a replayed order-paid trigger is a no-op.
    """


class ReservationConflictError(LedgerError):
    """Raised when a concurrent request reserved some of the selected commissions."""
