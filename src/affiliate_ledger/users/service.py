from __future__ import annotations

import secrets
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.constants import REFERRAL_CODE_LENGTH
from affiliate_ledger.users.exceptions import (
    ReferralCodeNotFoundError,
    ReferralCycleError,
    ReferrerAlreadySetError,
    SelfReferralError,
)
from affiliate_ledger.users.models import User

_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_GENERATION_ATTEMPTS = 10
# Upper bound for the cycle check when linking; real uplines are far shorter.
_CYCLE_CHECK_DEPTH = 64


class ReferralEnrolmentService:
    """Registers users and links them to their referrer exactly once."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def register_user(
        self,
        session: AsyncSession,
        email: str,
        referral_code: str | None = None,
    ) -> User:
        """Create a user with a fresh referral code, optionally linked upwards."""
        user = User(
            id=uuid.uuid4(),
            email=email.strip().lower(),
            referral_code=await self._generate_referral_code(session),
        )
        session.add(user)
        await session.flush()

        if referral_code:
            await self.attach_referrer(session, user, referral_code)

        self._logger.info(
            "user_registered",
            user_id=str(user.id),
            referrer_id=str(user.referrer_id) if user.referrer_id else None,
        )
        return user

    async def attach_referrer(
        self, session: AsyncSession, user: User, referral_code: str
    ) -> User:
        """Set ``user.referrer_id`` from a referral code; the link is immutable."""
        if user.referrer_id is not None:
            raise ReferrerAlreadySetError(f"User {user.id} already has a referrer")

        referrer = await self.get_by_referral_code(session, referral_code)
        if referrer is None:
            raise ReferralCodeNotFoundError(
                f"Referral code '{referral_code}' not found"
            )
        if referrer.id == user.id:
            raise SelfReferralError("Cannot refer yourself")
        if await self._is_in_upline(session, user.id, start=referrer.id):
            raise ReferralCycleError(
                f"User {user.id} is already in the upline of {referrer.id}"
            )

        user.referrer_id = referrer.id
        await session.flush()
        self._logger.info(
            "referrer_attached",
            user_id=str(user.id),
            referrer_id=str(referrer.id),
        )
        return user

    async def get_by_referral_code(
        self, session: AsyncSession, referral_code: str
    ) -> User | None:
        stmt = select(User).where(
            User.referral_code == referral_code.strip().upper(),
            User.is_active.is_(True),
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _is_in_upline(
        self, session: AsyncSession, user_id: uuid.UUID, *, start: uuid.UUID
    ) -> bool:
        current: uuid.UUID | None = start
        for _ in range(_CYCLE_CHECK_DEPTH):
            if current is None:
                return False
            if current == user_id:
                return True
            stmt = select(User.referrer_id).where(User.id == current)
            current = (await session.execute(stmt)).scalar_one_or_none()
        return False

    async def _generate_referral_code(self, session: AsyncSession) -> str:
        for _ in range(_CODE_GENERATION_ATTEMPTS):
            code = "".join(
                secrets.choice(_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH)
            )
            existing_stmt = select(User.id).where(User.referral_code == code).limit(1)
            existing = (await session.execute(existing_stmt)).scalar_one_or_none()
            if not existing:
                return code

        raise RuntimeError("Failed to generate unique referral code")
