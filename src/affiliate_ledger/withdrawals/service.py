from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.commissions.exceptions import ReservationConflictError
from affiliate_ledger.commissions.ledger import CommissionLedger
from affiliate_ledger.commissions.models import Commission
from affiliate_ledger.core.config import Settings, get_settings
from affiliate_ledger.core.constants import RESERVATION_RETRIES
from affiliate_ledger.core.money import ZERO, quantize_money
from affiliate_ledger.db.base import utcnow
from affiliate_ledger.db.pagination import Page, PaginationParams, paginate_query
from affiliate_ledger.db.session import supports_select_for_update
from affiliate_ledger.withdrawals.enums import (
    WithdrawalMethod,
    WithdrawalOutcome,
    WithdrawalStatus,
)
from affiliate_ledger.withdrawals.exceptions import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    WithdrawalAmountError,
    WithdrawalNotFoundError,
)
from affiliate_ledger.withdrawals.models import Withdrawal
from affiliate_ledger.withdrawals.schemas import AccountInfo


@dataclass(slots=True)
class WithdrawalSummary:
    """Per-status totals for the operator dashboard."""

    count: int = 0
    requested_total: Decimal = ZERO
    net_total: Decimal = ZERO


class WithdrawalManager:
    """Service managing the cash-out workflow on top of the commission ledger."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        ledger: CommissionLedger | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._ledger = ledger or CommissionLedger(settings=self._settings)
        self._logger = structlog.get_logger(__name__)

    @property
    def fee_rate(self) -> Decimal:
        return self._settings.withdrawal.fee_rate

    async def request(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        amount: Decimal | int | str,
        method: WithdrawalMethod | str,
        account_info: AccountInfo | Mapping[str, Any],
    ) -> Withdrawal:
        """Reserve enough CONFIRMED commissions to cover ``amount``.

        Commissions are indivisible, so the withdrawal covers the oldest
        commissions whose cumulative sum reaches ``amount`` and
        ``requested_amount`` may end up larger than what was asked for.
        """
        try:
            requested = quantize_money(amount)
        except (TypeError, ValueError) as exc:
            raise WithdrawalAmountError(str(exc)) from exc
        if requested <= 0:
            raise WithdrawalAmountError("Withdrawal amount must be positive")
        minimum = self._settings.withdrawal.min_amount
        if requested < minimum:
            raise WithdrawalAmountError(
                f"Minimum withdrawal amount is {minimum}, requested {requested}"
            )

        method = WithdrawalMethod(method)
        if not isinstance(account_info, AccountInfo):
            account_info = AccountInfo.model_validate(account_info)

        withdrawal: Withdrawal | None = None
        for attempt in range(RESERVATION_RETRIES + 1):
            candidates = await self._ledger.reservable_commissions(session, user_id)
            available = sum((c.amount for c in candidates), ZERO)
            if available < requested:
                await self._discard(session, withdrawal)
                raise InsufficientBalanceError(
                    f"Insufficient balance. Available: {available}, "
                    f"Requested: {requested}"
                )

            selection = _select_covering(candidates, requested)
            reserved_total = sum((c.amount for c in selection), ZERO)
            fee = quantize_money(reserved_total * self.fee_rate)

            if withdrawal is None:
                withdrawal = Withdrawal(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    method=method,
                    account_info=account_info.model_dump(exclude_none=True),
                    status=WithdrawalStatus.PENDING,
                )
                session.add(withdrawal)
            withdrawal.requested_amount = reserved_total
            withdrawal.fee_rate = self.fee_rate
            withdrawal.fee = fee
            withdrawal.net_amount = reserved_total - fee
            withdrawal.commission_ids = [str(c.id) for c in selection]
            await session.flush()

            try:
                await self._ledger.reserve(
                    session, withdrawal.id, [c.id for c in selection]
                )
            except ReservationConflictError as exc:
                self._logger.warning(
                    "withdrawal_reservation_conflict",
                    user_id=str(user_id),
                    withdrawal_id=str(withdrawal.id),
                    attempt=attempt + 1,
                    error=str(exc),
                )
                continue

            self._logger.info(
                "withdrawal_requested",
                user_id=str(user_id),
                withdrawal_id=str(withdrawal.id),
                requested_amount=str(withdrawal.requested_amount),
                fee=str(withdrawal.fee),
                net_amount=str(withdrawal.net_amount),
                commissions=len(selection),
            )
            return withdrawal

        await self._discard(session, withdrawal)
        raise InsufficientBalanceError(
            "Commissions were reserved by a concurrent request; "
            f"could not cover {requested}"
        )

    async def resolve(
        self,
        session: AsyncSession,
        withdrawal_id: uuid.UUID,
        outcome: WithdrawalOutcome | str,
        remark: str | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> Withdrawal:
        """Apply an operator decision; replaying the same decision is a no-op."""
        outcome = WithdrawalOutcome(outcome)
        withdrawal = await self._lock_withdrawal(session, withdrawal_id)
        target = outcome.target_status

        if withdrawal.is_terminal:
            if withdrawal.status is target:
                self._logger.info(
                    "withdrawal_resolve_replayed",
                    withdrawal_id=str(withdrawal.id),
                    status=withdrawal.status.value,
                )
                return withdrawal
            raise InvalidStateTransitionError(
                f"Withdrawal {withdrawal_id} is already {withdrawal.status.value}"
            )

        now = now or utcnow()
        if outcome is WithdrawalOutcome.APPROVE:
            paid = await self._ledger.settle(session, withdrawal.id, now=now)
            expected = len(withdrawal.commission_ids)
            if paid != expected:
                # Refunded commissions stay cancelled; the payout amount was
                # fixed at request time and is left for the operator.
                self._logger.warning(
                    "withdrawal_partially_settled",
                    withdrawal_id=str(withdrawal.id),
                    settled=paid,
                    expected=expected,
                )
        else:
            await self._ledger.release(session, withdrawal.id)

        withdrawal.status = target
        withdrawal.resolved_at = now
        if remark is not None:
            withdrawal.remark = remark
        await session.flush()

        self._logger.info(
            "withdrawal_resolved",
            withdrawal_id=str(withdrawal.id),
            user_id=str(withdrawal.user_id),
            outcome=outcome.value,
            status=withdrawal.status.value,
        )
        return withdrawal

    async def mark_processing(
        self,
        session: AsyncSession,
        withdrawal_id: uuid.UUID,
        *,
        now: dt.datetime | None = None,
    ) -> Withdrawal:
        withdrawal = await self._lock_withdrawal(session, withdrawal_id)
        if withdrawal.status is WithdrawalStatus.PROCESSING:
            return withdrawal
        if withdrawal.status is not WithdrawalStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Withdrawal {withdrawal_id} is {withdrawal.status.value}; "
                "only pending withdrawals can move to processing"
            )

        withdrawal.status = WithdrawalStatus.PROCESSING
        withdrawal.processing_at = now or utcnow()
        await session.flush()
        self._logger.info("withdrawal_processing", withdrawal_id=str(withdrawal.id))
        return withdrawal

    async def get_withdrawal(
        self, session: AsyncSession, withdrawal_id: uuid.UUID
    ) -> Withdrawal:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
        withdrawal = (await session.execute(stmt)).scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    async def list_withdrawals(
        self,
        session: AsyncSession,
        user_id: uuid.UUID | None = None,
        status: WithdrawalStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> Page[Withdrawal]:
        """Withdrawals newest first, optionally for one user or status."""
        stmt = (
            select(Withdrawal)
            .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            stmt = stmt.where(Withdrawal.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Withdrawal.status == status)
        return await paginate_query(session, stmt, pagination or PaginationParams())

    async def summarize(
        self, session: AsyncSession, user_id: uuid.UUID | None = None
    ) -> dict[WithdrawalStatus, WithdrawalSummary]:
        stmt = select(
            Withdrawal.status, Withdrawal.requested_amount, Withdrawal.net_amount
        )
        if user_id is not None:
            stmt = stmt.where(Withdrawal.user_id == user_id)

        summary = {status: WithdrawalSummary() for status in WithdrawalStatus}
        for status, requested_amount, net_amount in (await session.execute(stmt)).all():
            entry = summary[status]
            entry.count += 1
            entry.requested_total += requested_amount
            entry.net_total += net_amount
        return summary

    async def _lock_withdrawal(
        self, session: AsyncSession, withdrawal_id: uuid.UUID
    ) -> Withdrawal:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
        if supports_select_for_update(session):
            stmt = stmt.with_for_update()
        withdrawal = (await session.execute(stmt)).scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    async def _discard(
        self, session: AsyncSession, withdrawal: Withdrawal | None
    ) -> None:
        if withdrawal is None:
            return
        await session.delete(withdrawal)
        await session.flush()


def _select_covering(
    candidates: list[Commission], amount: Decimal
) -> list[Commission]:
    selection: list[Commission] = []
    total = ZERO
    for commission in candidates:
        if total >= amount:
            break
        selection.append(commission)
        total += commission.amount
    return selection
