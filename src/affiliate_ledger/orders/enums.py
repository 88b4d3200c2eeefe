from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    """Order states published by the marketplace's payment flow."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"
