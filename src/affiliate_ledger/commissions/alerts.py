from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import structlog

from affiliate_ledger.withdrawals.enums import WithdrawalStatus


@dataclass(frozen=True, slots=True)
class OrphanedReservation:
    """A refunded commission that an in-flight withdrawal still counts on.

    The refund wins; the withdrawal keeps its requested amounts and needs an
    operator decision.
    """

    order_id: str
    commission_id: uuid.UUID
    withdrawal_id: uuid.UUID
    withdrawal_status: WithdrawalStatus
    beneficiary_id: uuid.UUID
    amount: Decimal


class OperatorAlertSink(Protocol):
    """Abstraction responsible for surfacing ledger anomalies to operators."""

    async def orphaned_reservation(self, alert: OrphanedReservation) -> None:
        """Report a cancelled commission still reserved by a live withdrawal."""


class LoggingOperatorAlertSink:
    """Default sink that logs alerts in lieu of a ticketing integration."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def orphaned_reservation(self, alert: OrphanedReservation) -> None:
        self._logger.warning(
            "orphaned_reservation",
            order_id=alert.order_id,
            commission_id=str(alert.commission_id),
            withdrawal_id=str(alert.withdrawal_id),
            withdrawal_status=alert.withdrawal_status.value,
            beneficiary_id=str(alert.beneficiary_id),
            amount=str(alert.amount),
        )
