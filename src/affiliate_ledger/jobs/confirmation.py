"""Periodic maturation of PENDING commissions past the refund window."""

from __future__ import annotations

import asyncio
import datetime as dt
import threading
import time

import schedule
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.commissions.ledger import CommissionLedger
from affiliate_ledger.core.config import Settings, get_settings
from affiliate_ledger.core.logging import job_context
from affiliate_ledger.db.session import create_engine, session_scope

logger = structlog.get_logger(__name__)


async def run_confirmation_sweep(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    ledger: CommissionLedger | None = None,
    now: dt.datetime | None = None,
) -> int:
    """Run ``confirm_due`` in its own transaction and return the row count."""
    ledger = ledger or CommissionLedger()
    with job_context("confirmation_sweep"):
        async with session_scope(session_factory) as session:
            confirmed = await ledger.confirm_due(session, now=now)
        logger.info("confirmation_sweep_completed", confirmed=confirmed)
        return confirmed


class ConfirmationScheduler:
    """Runs the confirmation sweep on a fixed interval in a daemon thread."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ledger: CommissionLedger | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._ledger = ledger or CommissionLedger(settings=self.settings)
        self._scheduler = schedule.Scheduler()
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if not self.settings.confirmation.enabled:
            logger.info("confirmation_scheduler_disabled")
            return
        if self._running:
            return

        interval = self.settings.confirmation.interval_minutes
        self._scheduler.every(interval).minutes.do(self.run_sweep)
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop, name="confirmation-sweep", daemon=True
        )
        self._thread.start()
        logger.info("confirmation_scheduler_started", interval_minutes=interval)

    def stop(self) -> None:
        self._running = False
        self._scheduler.clear()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("confirmation_scheduler_stopped")

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_sweep(self) -> int | None:
        """Run one sweep on a fresh event loop; failures are logged, not raised."""
        try:
            return asyncio.run(self._sweep())
        except Exception as exc:
            logger.error("confirmation_sweep_failed", error=str(exc), exc_info=True)
            return None

    async def _sweep(self) -> int:
        if self._session_factory is not None:
            return await run_confirmation_sweep(self._session_factory, self._ledger)

        # Pooled connections are bound to the loop that opened them, so every
        # run gets an engine of its own.
        engine = create_engine(
            self.settings.database.dsn, echo=self.settings.database.echo
        )
        try:
            factory = async_sessionmaker(
                engine, expire_on_commit=False, autoflush=False
            )
            return await run_confirmation_sweep(factory, self._ledger)
        finally:
            await engine.dispose()

    def _run_loop(self) -> None:
        while self._running:
            try:
                self._scheduler.run_pending()
            except Exception as exc:
                logger.error("confirmation_scheduler_loop_error", error=str(exc))
                time.sleep(5)
                continue
            time.sleep(1)
