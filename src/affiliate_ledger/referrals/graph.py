from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.constants import MAX_REFERRAL_LEVELS
from affiliate_ledger.users.models import User

ReferrerLookup = Callable[[uuid.UUID], Awaitable[uuid.UUID | None]]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Beneficiary:
    """A user entitled to a commission at a given referral level."""

    level: int
    user_id: uuid.UUID


async def walk_upline(
    buyer_id: uuid.UUID,
    referrer_of: ReferrerLookup,
    *,
    max_levels: int = MAX_REFERRAL_LEVELS,
) -> list[Beneficiary]:
    """Follow single-parent referrer links upwards from ``buyer_id``.

    Stops at the first missing referrer or at the first user already seen in
    the walk (the buyer included). A cycle truncates the upline and is
    logged; it never raises, so corrupt referral data cannot block an order.
    """

    upline: list[Beneficiary] = []
    seen = {buyer_id}
    current = buyer_id
    for level in range(1, max_levels + 1):
        parent = await referrer_of(current)
        if parent is None:
            break
        if parent in seen:
            logger.warning(
                "referral_cycle_detected",
                buyer_id=str(buyer_id),
                user_id=str(current),
                referrer_id=str(parent),
                level=level,
            )
            break
        upline.append(Beneficiary(level=level, user_id=parent))
        seen.add(parent)
        current = parent
    return upline


class ReferralGraph:
    """Resolves a buyer's upline from the ``users.referrer_id`` links."""

    def __init__(self, *, max_levels: int = MAX_REFERRAL_LEVELS) -> None:
        self._max_levels = max_levels

    async def upline(
        self, session: AsyncSession, buyer_id: uuid.UUID
    ) -> list[Beneficiary]:
        async def referrer_of(user_id: uuid.UUID) -> uuid.UUID | None:
            stmt = select(User.referrer_id).where(User.id == user_id)
            return (await session.execute(stmt)).scalar_one_or_none()

        return await walk_upline(buyer_id, referrer_of, max_levels=self._max_levels)
