from __future__ import annotations

from .enums import WithdrawalMethod, WithdrawalOutcome, WithdrawalStatus
from .models import Withdrawal
from .schemas import AccountInfo

__all__ = [
    "AccountInfo",
    "Withdrawal",
    "WithdrawalMethod",
    "WithdrawalOutcome",
    "WithdrawalStatus",
]
