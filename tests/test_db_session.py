from __future__ import annotations

import pytest
from sqlalchemy import select

from affiliate_ledger.db import session as db_session
from affiliate_ledger.db.base import Base
from affiliate_ledger.users.models import User
from tests.factories import create_user


@pytest.mark.asyncio
async def test_session_scope_commits_and_rolls_back() -> None:
    engine = db_session.get_engine()
    try:
        assert db_session.get_engine() is engine
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

        async with db_session.session_scope() as session:
            kept = await create_user(session, email="kept@example.com")

        with pytest.raises(RuntimeError):
            async with db_session.session_scope() as session:
                await create_user(session, email="dropped@example.com")
                raise RuntimeError("boom")

        async with db_session.session_scope() as session:
            emails = (await session.execute(select(User.email))).scalars().all()
            assert emails == [kept.email]
            assert db_session.supports_select_for_update(session) is False
    finally:
        await db_session.dispose_engine()

    assert db_session._ENGINE is None
    assert db_session._SESSION_FACTORY is None
