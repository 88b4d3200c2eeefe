from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from affiliate_ledger.core.constants import MONEY_QUANTUM

__all__ = ["ZERO", "to_decimal", "quantize_money"]

ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce ``value`` to a finite :class:`Decimal`, never via ``float``."""

    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid monetary value: {value!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Monetary values must be finite, got {value!r}")
    return value


def quantize_money(value: Decimal | int | str) -> Decimal:
    """Round to the currency minor unit using round-half-up."""

    amount = to_decimal(value)
    try:
        return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        # More digits than the decimal context can hold at cent precision.
        raise ValueError(f"Monetary value out of range: {value!r}") from exc
