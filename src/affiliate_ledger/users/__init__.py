from __future__ import annotations

from .models import User
from .service import ReferralEnrolmentService

__all__ = ["User", "ReferralEnrolmentService"]
