from __future__ import annotations

import logging

import pytest
import structlog

import affiliate_ledger.core.logging as ledger_logging
from affiliate_ledger.core.config import Settings


def test_configure_logging_runs_once(
    monkeypatch: pytest.MonkeyPatch, settings: Settings
) -> None:
    monkeypatch.setattr(ledger_logging, "_LOGGING_INITIALISED", False)
    try:
        ledger_logging.configure_logging(settings)

        assert structlog.is_configured()
        assert ledger_logging._LOGGING_INITIALISED is True
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("schedule").level == logging.WARNING
        assert structlog.contextvars.get_contextvars()["service"] == (
            "affiliate-ledger"
        )

        ledger_logging.configure_logging(settings)
    finally:
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()


def test_job_context_binds_and_restores() -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service="affiliate-ledger")
    try:
        with ledger_logging.job_context("confirmation_sweep", batch=3) as run_id:
            context = structlog.contextvars.get_contextvars()
            assert context["job"] == "confirmation_sweep"
            assert context["run_id"] == run_id
            assert context["batch"] == 3
            assert context["service"] == "affiliate-ledger"

            with ledger_logging.job_context("nested") as inner_id:
                assert inner_id != run_id
                assert structlog.contextvars.get_contextvars()["job"] == "nested"
            assert structlog.contextvars.get_contextvars()["run_id"] == run_id

        assert structlog.contextvars.get_contextvars() == {
            "service": "affiliate-ledger"
        }
    finally:
        structlog.contextvars.clear_contextvars()
