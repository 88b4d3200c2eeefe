from __future__ import annotations

from .graph import Beneficiary, ReferralGraph, walk_upline
from .rules import CommissionRuleSet

__all__ = ["Beneficiary", "ReferralGraph", "walk_upline", "CommissionRuleSet"]
