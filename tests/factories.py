from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from itertools import count
from secrets import token_hex

from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.commissions.enums import CommissionStatus
from affiliate_ledger.commissions.models import Commission
from affiliate_ledger.core.money import quantize_money
from affiliate_ledger.db.base import utcnow
from affiliate_ledger.users.models import User
from affiliate_ledger.withdrawals.enums import WithdrawalMethod, WithdrawalStatus
from affiliate_ledger.withdrawals.models import Withdrawal

_counter = count(1)

ACCOUNT_INFO = {"name": "Li Lei", "number": "6222020200112233", "bank_name": "ICBC"}


async def create_user(
    session: AsyncSession,
    *,
    referrer: User | None = None,
    email: str | None = None,
) -> User:
    index = next(_counter)
    user = User(
        id=uuid.uuid4(),
        email=email or f"user{index}@example.com",
        referral_code=token_hex(6).upper(),
        referrer_id=referrer.id if referrer is not None else None,
    )
    session.add(user)
    await session.flush()
    return user


async def create_chain(session: AsyncSession, length: int) -> list[User]:
    """Users where each one was referred by the previous one."""
    users: list[User] = []
    referrer: User | None = None
    for _ in range(length):
        referrer = await create_user(session, referrer=referrer)
        users.append(referrer)
    return users


async def add_commission(
    session: AsyncSession,
    *,
    to_user: User,
    from_user: User,
    amount: Decimal | str,
    status: CommissionStatus = CommissionStatus.CONFIRMED,
    level: int = 1,
    order_id: str | None = None,
    created_at: dt.datetime | None = None,
) -> Commission:
    commission = Commission(
        id=uuid.uuid4(),
        order_id=order_id or f"order-{next(_counter)}",
        from_user_id=from_user.id,
        to_user_id=to_user.id,
        level=level,
        rate=Decimal("0.15") if level == 1 else Decimal("0.05"),
        amount=quantize_money(amount),
        status=status,
        created_at=created_at or utcnow(),
    )
    if status is CommissionStatus.CONFIRMED:
        commission.confirmed_at = commission.created_at
    session.add(commission)
    await session.flush()
    return commission


async def add_withdrawal(
    session: AsyncSession,
    *,
    user: User,
    amount: Decimal | str = "10.00",
    status: WithdrawalStatus = WithdrawalStatus.PENDING,
) -> Withdrawal:
    requested = quantize_money(amount)
    withdrawal = Withdrawal(
        id=uuid.uuid4(),
        user_id=user.id,
        requested_amount=requested,
        fee_rate=Decimal("0.02"),
        fee=Decimal("0.00"),
        net_amount=requested,
        method=WithdrawalMethod.BANK_CARD,
        account_info=dict(ACCOUNT_INFO),
        status=status,
        commission_ids=[],
    )
    session.add(withdrawal)
    await session.flush()
    return withdrawal
