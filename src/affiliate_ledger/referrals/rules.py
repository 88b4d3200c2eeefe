from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from affiliate_ledger.commissions.exceptions import UnknownCommissionLevelError
from affiliate_ledger.core.config import Settings, get_settings
from affiliate_ledger.core.money import quantize_money, to_decimal


class CommissionRuleSet:
    """Maps an order total and referral level to a commission amount."""

    def __init__(self, level_rates: Mapping[int, Decimal]) -> None:
        self._rates = {level: Decimal(str(rate)) for level, rate in level_rates.items()}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CommissionRuleSet:
        settings = settings or get_settings()
        return cls(settings.commission.level_rates)

    @property
    def levels(self) -> tuple[int, ...]:
        return tuple(sorted(self._rates))

    def rate_for(self, level: int) -> Decimal:
        try:
            return self._rates[level]
        except KeyError as exc:
            raise UnknownCommissionLevelError(
                f"No commission rate configured for level {level}"
            ) from exc

    def commission_for(self, order_total: Decimal | int | str, level: int) -> Decimal:
        total = to_decimal(order_total)
        if total < 0:
            raise ValueError("Order total must not be negative")
        return quantize_money(total * self.rate_for(level))
