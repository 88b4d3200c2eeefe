from __future__ import annotations

from decimal import Decimal

import pytest

from affiliate_ledger.commissions.exceptions import UnknownCommissionLevelError
from affiliate_ledger.core.config import Settings
from affiliate_ledger.referrals.rules import CommissionRuleSet


def test_default_rates_from_settings(settings: Settings) -> None:
    rules = CommissionRuleSet.from_settings(settings)

    assert rules.levels == (1, 2)
    assert rules.rate_for(1) == Decimal("0.15")
    assert rules.rate_for(2) == Decimal("0.05")
    assert rules.commission_for(Decimal("200.00"), 1) == Decimal("30.00")
    assert rules.commission_for("200", 2) == Decimal("10.00")


@pytest.mark.parametrize(
    ("total", "level", "expected"),
    [
        ("0.10", 1, "0.02"),  # 0.015 rounds half up
        ("33.33", 2, "1.67"),  # 1.6665
        ("0.09", 2, "0.00"),
        ("0", 1, "0.00"),
    ],
)
def test_commission_is_rounded_half_up_to_cents(
    total: str, level: int, expected: str
) -> None:
    rules = CommissionRuleSet({1: Decimal("0.15"), 2: Decimal("0.05")})

    assert rules.commission_for(total, level) == Decimal(expected)


def test_unknown_level_is_rejected() -> None:
    rules = CommissionRuleSet({1: Decimal("0.10")})

    assert rules.levels == (1,)
    with pytest.raises(UnknownCommissionLevelError):
        rules.commission_for("100.00", 2)


def test_invalid_totals_are_rejected() -> None:
    rules = CommissionRuleSet({1: Decimal("0.15")})

    with pytest.raises(ValueError):
        rules.commission_for("-1.00", 1)
    with pytest.raises(TypeError):
        rules.commission_for(10.5, 1)  # type: ignore[arg-type]
    for total in ("NaN", Decimal("sNaN"), "Infinity", "1e40"):
        with pytest.raises(ValueError):
            rules.commission_for(total, 1)
