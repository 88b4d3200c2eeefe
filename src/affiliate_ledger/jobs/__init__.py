from __future__ import annotations

from .confirmation import ConfirmationScheduler, run_confirmation_sweep

__all__ = ["ConfirmationScheduler", "run_confirmation_sweep"]
