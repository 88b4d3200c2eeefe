"""Adapter between order status transitions and the commission ledger."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.commissions.ledger import CommissionLedger, RefundOutcome
from affiliate_ledger.commissions.models import Commission
from affiliate_ledger.core.money import to_decimal

from .enums import OrderStatus


@dataclass(frozen=True, slots=True)
class OrderEvent:
    """The slice of an order the ledger cares about."""

    order_id: str
    buyer_id: uuid.UUID
    total_amount: Decimal
    status: OrderStatus
    occurred_at: dt.datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> OrderEvent:
        occurred_at = payload.get("occurred_at")
        timestamp: dt.datetime | None = None
        if isinstance(occurred_at, str):
            timestamp = dt.datetime.fromisoformat(occurred_at)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=dt.UTC)
        return cls(
            order_id=str(payload["order_id"]),
            buyer_id=uuid.UUID(str(payload["buyer_id"])),
            total_amount=to_decimal(str(payload["total_amount"])),
            status=OrderStatus(str(payload["status"])),
            occurred_at=timestamp,
        )


class OrderEventHandler:
    """Routes PAID and REFUNDED order events to the ledger."""

    def __init__(self, ledger: CommissionLedger | None = None) -> None:
        self._ledger = ledger or CommissionLedger()
        self._logger = structlog.get_logger(__name__)

    async def handle(
        self, session: AsyncSession, event: OrderEvent
    ) -> list[Commission] | RefundOutcome | None:
        if event.status is OrderStatus.PAID:
            return await self._ledger.on_order_paid(
                session, event.order_id, event.buyer_id, event.total_amount
            )
        if event.status is OrderStatus.REFUNDED:
            return await self._ledger.on_order_refunded(
                session, event.order_id, now=event.occurred_at
            )

        self._logger.debug(
            "order_event_ignored",
            order_id=event.order_id,
            status=event.status.value,
        )
        return None
