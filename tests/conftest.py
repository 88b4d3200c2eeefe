from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.commissions.ledger import CommissionLedger
from affiliate_ledger.core.config import Settings, get_settings
from affiliate_ledger.db.base import Base
from affiliate_ledger.db.session import create_engine
from affiliate_ledger.withdrawals.service import WithdrawalManager

# Registers every table on Base.metadata.
import affiliate_ledger.commissions.models  # noqa: F401
import affiliate_ledger.users.models  # noqa: F401
import affiliate_ledger.withdrawals.models  # noqa: F401


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture(autouse=True)
def settings(monkeypatch: pytest.MonkeyPatch, database_url: str) -> Iterator[Settings]:
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DATABASE__URL", database_url)
    get_settings.cache_clear()
    try:
        yield get_settings()
    finally:
        get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(
    database_url: str,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine(database_url)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        engine, expire_on_commit=False, autoflush=False
    )

    try:
        yield session_maker
    finally:
        await engine.dispose()


@pytest.fixture
def ledger(settings: Settings) -> CommissionLedger:
    return CommissionLedger(settings=settings)


@pytest.fixture
def manager(settings: Settings, ledger: CommissionLedger) -> WithdrawalManager:
    return WithdrawalManager(settings=settings, ledger=ledger)
