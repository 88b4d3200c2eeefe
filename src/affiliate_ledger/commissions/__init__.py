from __future__ import annotations

from .enums import CommissionStatus
from .models import Commission

__all__ = ["Commission", "CommissionStatus"]
