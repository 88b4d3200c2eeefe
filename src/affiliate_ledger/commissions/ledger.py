from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.commissions.alerts import (
    LoggingOperatorAlertSink,
    OperatorAlertSink,
    OrphanedReservation,
)
from affiliate_ledger.commissions.enums import CommissionStatus
from affiliate_ledger.commissions.exceptions import (
    CommissionNotFoundError,
    DuplicateAccrualError,
    InvalidStateTransitionError,
    ReservationConflictError,
)
from affiliate_ledger.commissions.models import Commission
from affiliate_ledger.core.config import Settings, get_settings
from affiliate_ledger.core.money import ZERO, to_decimal
from affiliate_ledger.db.base import utcnow
from affiliate_ledger.db.pagination import Page, PaginationParams, paginate_query
from affiliate_ledger.db.session import supports_select_for_update
from affiliate_ledger.referrals.graph import Beneficiary, ReferralGraph
from affiliate_ledger.referrals.rules import CommissionRuleSet
from affiliate_ledger.users.models import User
from affiliate_ledger.withdrawals.enums import (
    ACTIVE_WITHDRAWAL_STATUSES,
    WithdrawalStatus,
)
from affiliate_ledger.withdrawals.models import Withdrawal

_REFUNDABLE_STATUSES = (CommissionStatus.PENDING, CommissionStatus.CONFIRMED)


@dataclass(slots=True)
class RefundOutcome:
    """Result of applying an order refund to the ledger."""

    order_id: str
    cancelled: list[Commission] = field(default_factory=list)
    orphaned: list[OrphanedReservation] = field(default_factory=list)


@dataclass(slots=True)
class CommissionStats:
    """Commission totals for a beneficiary, recomputed from rows."""

    total_earned: Decimal
    pending: Decimal
    available: Decimal
    reserved: Decimal
    paid: Decimal
    cancelled: Decimal
    referral_count: int


class CommissionLedger:
    """Owns commission rows: accrual, maturation, cancellation and balances.

    Every method takes the caller's session and only flushes; committing is
    the caller's decision so a request and its side effects share one
    transaction.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        graph: ReferralGraph | None = None,
        rules: CommissionRuleSet | None = None,
        alerts: OperatorAlertSink | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._rules = rules or CommissionRuleSet.from_settings(self._settings)
        self._graph = graph or ReferralGraph(max_levels=max(self._rules.levels))
        self._alerts = alerts or LoggingOperatorAlertSink()
        self._logger = structlog.get_logger(__name__)

    @property
    def confirmation_window(self) -> dt.timedelta:
        return dt.timedelta(days=self._settings.commission.confirmation_window_days)

    async def on_order_paid(
        self,
        session: AsyncSession,
        order_id: str,
        buyer_id: uuid.UUID,
        order_total: Decimal | int | str,
    ) -> list[Commission]:
        """Accrue PENDING commissions for the buyer's upline.

        Safe under at-least-once delivery: only rows that did not exist yet
        are created and returned.
        """
        order_id = str(order_id).strip()
        if not order_id:
            raise ValueError("order_id must not be empty")
        total = to_decimal(order_total)
        if total < 0:
            raise ValueError("Order total must not be negative")

        beneficiaries = await self._graph.upline(session, buyer_id)
        created: list[Commission] = []
        for beneficiary in beneficiaries:
            if beneficiary.user_id == buyer_id:
                continue
            if beneficiary.level not in self._rules.levels:
                continue
            try:
                commission = await self._accrue(
                    session, order_id, buyer_id, beneficiary, total
                )
            except DuplicateAccrualError:
                self._logger.info(
                    "commission_accrual_duplicate",
                    order_id=order_id,
                    to_user_id=str(beneficiary.user_id),
                    level=beneficiary.level,
                )
                continue
            created.append(commission)

        if created:
            self._logger.info(
                "commissions_accrued",
                order_id=order_id,
                buyer_id=str(buyer_id),
                count=len(created),
                amounts=[str(commission.amount) for commission in created],
            )
        return created

    async def on_order_refunded(
        self,
        session: AsyncSession,
        order_id: str,
        *,
        now: dt.datetime | None = None,
    ) -> RefundOutcome:
        """Cancel the order's PENDING and CONFIRMED commissions.

        PAID commissions are left alone. A cancelled commission still held by
        an active withdrawal is reported as an orphaned reservation; the
        withdrawal itself is not touched.
        """
        now = now or utcnow()
        outcome = RefundOutcome(order_id=order_id)

        stmt = (
            select(Commission)
            .where(
                Commission.order_id == order_id,
                Commission.status.in_(_REFUNDABLE_STATUSES),
            )
            .order_by(Commission.created_at, Commission.id)
            .execution_options(populate_existing=True)
        )
        if supports_select_for_update(session):
            stmt = stmt.with_for_update()
        commissions = list((await session.execute(stmt)).scalars().all())
        if not commissions:
            self._logger.info("commission_refund_noop", order_id=order_id)
            return outcome

        withdrawal_statuses = await self._withdrawal_statuses(
            session,
            {c.withdrawal_id for c in commissions if c.withdrawal_id is not None},
        )

        for commission in commissions:
            commission.status = CommissionStatus.CANCELLED
            commission.cancelled_at = now
            outcome.cancelled.append(commission)

            withdrawal_status = withdrawal_statuses.get(commission.withdrawal_id)
            if (
                commission.withdrawal_id is not None
                and withdrawal_status in ACTIVE_WITHDRAWAL_STATUSES
            ):
                outcome.orphaned.append(
                    OrphanedReservation(
                        order_id=order_id,
                        commission_id=commission.id,
                        withdrawal_id=commission.withdrawal_id,
                        withdrawal_status=withdrawal_status,
                        beneficiary_id=commission.to_user_id,
                        amount=commission.amount,
                    )
                )

        await session.flush()

        for alert in outcome.orphaned:
            await self._alerts.orphaned_reservation(alert)

        self._logger.info(
            "commissions_cancelled",
            order_id=order_id,
            count=len(outcome.cancelled),
            orphaned=len(outcome.orphaned),
        )
        return outcome

    async def confirm(
        self,
        session: AsyncSession,
        commission_id: uuid.UUID,
        *,
        now: dt.datetime | None = None,
    ) -> Commission:
        """Confirm a PENDING commission ahead of its window."""
        commission = await self._get_for_update(session, commission_id)
        if commission.status is CommissionStatus.CONFIRMED:
            return commission
        if commission.status is not CommissionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Commission {commission_id} is {commission.status.value}; "
                "only pending commissions can be confirmed"
            )

        commission.status = CommissionStatus.CONFIRMED
        commission.confirmed_at = now or utcnow()
        await session.flush()
        self._logger.info(
            "commission_confirmed",
            commission_id=str(commission.id),
            to_user_id=str(commission.to_user_id),
        )
        return commission

    async def confirm_due(
        self, session: AsyncSession, *, now: dt.datetime | None = None
    ) -> int:
        """Confirm every PENDING commission older than the refund window."""
        now = now or utcnow()
        cutoff = now - self.confirmation_window
        stmt = (
            update(Commission)
            .where(
                Commission.status == CommissionStatus.PENDING,
                Commission.created_at <= cutoff,
            )
            .values(
                status=CommissionStatus.CONFIRMED,
                confirmed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        confirmed = int(result.rowcount or 0)
        self._logger.info(
            "commissions_confirmation_sweep",
            cutoff=cutoff.isoformat(),
            confirmed=confirmed,
        )
        return confirmed

    async def available_balance(
        self, session: AsyncSession, user_id: uuid.UUID
    ) -> Decimal:
        """Sum of the user's CONFIRMED, unreserved commissions."""
        stmt = select(Commission.amount).where(
            Commission.to_user_id == user_id,
            Commission.status == CommissionStatus.CONFIRMED,
            Commission.withdrawal_id.is_(None),
        )
        amounts = (await session.execute(stmt)).scalars().all()
        return sum(amounts, ZERO)

    async def get_commission(
        self, session: AsyncSession, commission_id: uuid.UUID
    ) -> Commission:
        stmt = (
            select(Commission)
            .where(Commission.id == commission_id)
            .execution_options(populate_existing=True)
        )
        commission = (await session.execute(stmt)).scalar_one_or_none()
        if commission is None:
            raise CommissionNotFoundError(f"Commission {commission_id} not found")
        return commission

    async def list_commissions(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        status: CommissionStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> Page[Commission]:
        """Commissions earned by ``user_id``, newest first."""
        stmt = (
            select(Commission)
            .where(Commission.to_user_id == user_id)
            .order_by(Commission.created_at.desc(), Commission.id.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(Commission.status == status)
        return await paginate_query(session, stmt, pagination or PaginationParams())

    async def list_order_commissions(
        self, session: AsyncSession, order_id: str
    ) -> list[Commission]:
        stmt = (
            select(Commission)
            .where(Commission.order_id == order_id)
            .order_by(Commission.level)
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def get_stats(
        self, session: AsyncSession, user_id: uuid.UUID
    ) -> CommissionStats:
        rows = (
            await session.execute(
                select(
                    Commission.status, Commission.amount, Commission.withdrawal_id
                ).where(Commission.to_user_id == user_id)
            )
        ).all()

        totals = {status: ZERO for status in CommissionStatus}
        reserved = ZERO
        for status, amount, withdrawal_id in rows:
            totals[status] += amount
            if status is CommissionStatus.CONFIRMED and withdrawal_id is not None:
                reserved += amount

        referral_count = (
            await session.execute(
                select(func.count(User.id)).where(User.referrer_id == user_id)
            )
        ).scalar() or 0

        return CommissionStats(
            total_earned=(
                totals[CommissionStatus.PENDING]
                + totals[CommissionStatus.CONFIRMED]
                + totals[CommissionStatus.PAID]
            ),
            pending=totals[CommissionStatus.PENDING],
            available=totals[CommissionStatus.CONFIRMED] - reserved,
            reserved=reserved,
            paid=totals[CommissionStatus.PAID],
            cancelled=totals[CommissionStatus.CANCELLED],
            referral_count=int(referral_count),
        )

    # Reservation primitives. Only WithdrawalManager calls these.

    async def reservable_commissions(
        self, session: AsyncSession, user_id: uuid.UUID
    ) -> list[Commission]:
        """CONFIRMED, unreserved commissions for ``user_id``, oldest first."""
        stmt = (
            select(Commission)
            .where(
                Commission.to_user_id == user_id,
                Commission.status == CommissionStatus.CONFIRMED,
                Commission.withdrawal_id.is_(None),
            )
            .order_by(Commission.created_at, Commission.id)
            .execution_options(populate_existing=True)
        )
        if supports_select_for_update(session):
            stmt = stmt.with_for_update()
        return list((await session.execute(stmt)).scalars().all())

    async def reserve(
        self,
        session: AsyncSession,
        withdrawal_id: uuid.UUID,
        commission_ids: Sequence[uuid.UUID],
    ) -> None:
        """Attach ``commission_ids`` to a withdrawal, all or nothing.

        The update only matches rows that are still CONFIRMED and unreserved,
        so a commission taken by a concurrent request or cancelled by a
        refund in the meantime shortens the row count.
        """
        ids = list(dict.fromkeys(commission_ids))
        if not ids:
            raise ValueError("At least one commission is required for a reservation")

        stmt = (
            update(Commission)
            .where(
                Commission.id.in_(ids),
                Commission.status == CommissionStatus.CONFIRMED,
                Commission.withdrawal_id.is_(None),
            )
            .values(withdrawal_id=withdrawal_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        reserved = int(result.rowcount or 0)
        if reserved != len(ids):
            await self.release(session, withdrawal_id)
            raise ReservationConflictError(
                f"Reserved {reserved} of {len(ids)} commissions "
                f"for withdrawal {withdrawal_id}"
            )

    async def settle(
        self,
        session: AsyncSession,
        withdrawal_id: uuid.UUID,
        *,
        now: dt.datetime | None = None,
    ) -> int:
        """Mark the withdrawal's reserved CONFIRMED commissions as PAID."""
        now = now or utcnow()
        stmt = (
            update(Commission)
            .where(
                Commission.withdrawal_id == withdrawal_id,
                Commission.status == CommissionStatus.CONFIRMED,
            )
            .values(status=CommissionStatus.PAID, paid_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)

    async def release(self, session: AsyncSession, withdrawal_id: uuid.UUID) -> int:
        """Detach every commission from the withdrawal, restoring availability."""
        stmt = (
            update(Commission)
            .where(
                Commission.withdrawal_id == withdrawal_id,
                Commission.status != CommissionStatus.PAID,
            )
            .values(withdrawal_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)

    async def _accrue(
        self,
        session: AsyncSession,
        order_id: str,
        buyer_id: uuid.UUID,
        beneficiary: Beneficiary,
        total: Decimal,
    ) -> Commission:
        exists_stmt = select(Commission.id).where(
            Commission.order_id == order_id,
            Commission.to_user_id == beneficiary.user_id,
            Commission.level == beneficiary.level,
        )
        if (await session.execute(exists_stmt)).scalar_one_or_none() is not None:
            raise DuplicateAccrualError(order_id)

        commission = Commission(
            id=uuid.uuid4(),
            order_id=order_id,
            from_user_id=buyer_id,
            to_user_id=beneficiary.user_id,
            level=beneficiary.level,
            rate=self._rules.rate_for(beneficiary.level),
            amount=self._rules.commission_for(total, beneficiary.level),
            status=CommissionStatus.PENDING,
        )
        # A concurrent delivery of the same event can still win the insert;
        # the savepoint keeps the outer transaction usable when it does.
        try:
            async with session.begin_nested():
                session.add(commission)
                await session.flush()
        except IntegrityError as exc:
            if not _is_accrual_conflict(exc):
                raise
            raise DuplicateAccrualError(order_id) from exc
        return commission

    async def _get_for_update(
        self, session: AsyncSession, commission_id: uuid.UUID
    ) -> Commission:
        stmt = (
            select(Commission)
            .where(Commission.id == commission_id)
            .execution_options(populate_existing=True)
        )
        if supports_select_for_update(session):
            stmt = stmt.with_for_update()
        commission = (await session.execute(stmt)).scalar_one_or_none()
        if commission is None:
            raise CommissionNotFoundError(f"Commission {commission_id} not found")
        return commission

    async def _withdrawal_statuses(
        self, session: AsyncSession, withdrawal_ids: set[uuid.UUID]
    ) -> dict[uuid.UUID, WithdrawalStatus]:
        if not withdrawal_ids:
            return {}
        stmt = select(Withdrawal.id, Withdrawal.status).where(
            Withdrawal.id.in_(withdrawal_ids)
        )
        return {row.id: row.status for row in (await session.execute(stmt)).all()}


def _is_accrual_conflict(error: IntegrityError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return (
        "uq_commissions_accrual_key" in message
        or "commissions.order_id, commissions.to_user_id, commissions.level" in message
    )
