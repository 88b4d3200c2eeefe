from __future__ import annotations

import asyncio
import datetime as dt

import pytest
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.commissions.enums import CommissionStatus
from affiliate_ledger.commissions.ledger import CommissionLedger
from affiliate_ledger.core.config import Settings
from affiliate_ledger.db.base import Base, utcnow
from affiliate_ledger.db.session import create_engine
from affiliate_ledger.jobs.confirmation import (
    ConfirmationScheduler,
    run_confirmation_sweep,
)
from tests.factories import add_commission, create_chain


class FailingLedger(CommissionLedger):
    async def confirm_due(self, session, *, now=None):  # type: ignore[override]
        raise RuntimeError("database unavailable")


class ContextRecordingLedger(CommissionLedger):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings=settings)
        self.seen: dict[str, object] = {}

    async def confirm_due(self, session, *, now=None):  # type: ignore[override]
        self.seen = structlog.contextvars.get_contextvars()
        return 0


@pytest.mark.asyncio
async def test_sweep_commits_confirmed_rows(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: CommissionLedger,
) -> None:
    now = utcnow()
    async with session_factory() as session:
        referrer, buyer = await create_chain(session, 2)
        due = await add_commission(
            session,
            to_user=referrer,
            from_user=buyer,
            amount="15.00",
            status=CommissionStatus.PENDING,
            created_at=now - dt.timedelta(days=10),
        )
        await session.commit()

    confirmed = await run_confirmation_sweep(session_factory, ledger, now=now)
    assert confirmed == 1
    assert await run_confirmation_sweep(session_factory, ledger, now=now) == 0

    async with session_factory() as session:
        current = await ledger.get_commission(session, due.id)
        assert current.status is CommissionStatus.CONFIRMED
        assert current.confirmed_at is not None


@pytest.mark.asyncio
async def test_sweep_logs_under_job_context(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> None:
    ledger = ContextRecordingLedger(settings)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service="affiliate-ledger")
    try:
        assert await run_confirmation_sweep(session_factory, ledger) == 0

        assert ledger.seen["job"] == "confirmation_sweep"
        assert ledger.seen["service"] == "affiliate-ledger"
        assert isinstance(ledger.seen["run_id"], str)
        after = structlog.contextvars.get_contextvars()
        assert after == {"service": "affiliate-ledger"}
    finally:
        structlog.contextvars.clear_contextvars()


def test_scheduler_run_sweep_uses_its_own_engine(settings: Settings) -> None:
    async def seed() -> None:
        engine = create_engine(settings.database.dsn)
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        async with factory() as session:
            referrer, buyer = await create_chain(session, 2)
            await add_commission(
                session,
                to_user=referrer,
                from_user=buyer,
                amount="8.00",
                status=CommissionStatus.PENDING,
                created_at=utcnow() - dt.timedelta(days=30),
            )
            await session.commit()
        await engine.dispose()

    asyncio.run(seed())
    scheduler = ConfirmationScheduler(settings)

    assert scheduler.run_sweep() == 1
    assert scheduler.run_sweep() == 0


def test_scheduler_swallows_failed_runs(settings: Settings) -> None:
    scheduler = ConfirmationScheduler(settings, ledger=FailingLedger(settings=settings))

    assert scheduler.run_sweep() is None


def test_scheduler_start_and_stop(settings: Settings) -> None:
    scheduler = ConfirmationScheduler(settings)

    scheduler.start()
    try:
        assert scheduler.is_running
        jobs = scheduler._scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].interval == 60
        assert jobs[0].unit == "minutes"
    finally:
        scheduler.stop()

    assert not scheduler.is_running
    assert scheduler._scheduler.get_jobs() == []


def test_disabled_scheduler_does_not_start(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CONFIRMATION__ENABLED", "false")
    scheduler = ConfirmationScheduler(Settings())

    scheduler.start()

    assert not scheduler.is_running
    assert scheduler._scheduler.get_jobs() == []
