from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from affiliate_ledger.core.config import Environment, Settings, get_settings


def test_defaults(settings: Settings, database_url: str) -> None:
    assert settings.environment is Environment.TEST
    assert settings.is_testing
    assert not settings.is_production
    assert settings.debug is True
    assert settings.database.dsn == database_url
    assert settings.commission.level_rates == {
        1: Decimal("0.15"),
        2: Decimal("0.05"),
    }
    assert settings.commission.confirmation_window_days == 7
    assert settings.withdrawal.fee_rate == Decimal("0.02")
    assert settings.withdrawal.min_amount == Decimal("10.00")
    assert settings.confirmation.enabled is True
    assert settings.confirmation.interval_minutes == 60


def test_nested_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMMISSION__LEVEL_RATES", '{"1": "0.20"}')
    monkeypatch.setenv("COMMISSION__CONFIRMATION_WINDOW_DAYS", "14")
    monkeypatch.setenv("WITHDRAWAL__FEE_RATE", "0.015")
    monkeypatch.setenv("CONFIRMATION__ENABLED", "false")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.commission.level_rates == {1: Decimal("0.20")}
    assert settings.commission.confirmation_window_days == 14
    assert settings.withdrawal.fee_rate == Decimal("0.015")
    assert settings.confirmation.enabled is False
    assert settings.log_level == "DEBUG"


def test_database_dsn_is_assembled_without_url(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("DATABASE__URL")
    monkeypatch.setenv("DATABASE__HOST", "db")
    monkeypatch.setenv("DATABASE__PASSWORD", "p@ss")

    settings = Settings()

    assert settings.database.dsn == (
        "postgresql+asyncpg://postgres:p%40ss@db:5432/affiliate_ledger"
    )


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("COMMISSION__LEVEL_RATES", '{"2": "0.05"}'),
        ("COMMISSION__LEVEL_RATES", '{"1": "0.1", "3": "0.01"}'),
        ("COMMISSION__LEVEL_RATES", '{"1": "1.5"}'),
        ("WITHDRAWAL__FEE_RATE", "1"),
        ("WITHDRAWAL__MIN_AMOUNT", "0"),
        ("CONFIRMATION__INTERVAL_MINUTES", "0"),
    ],
)
def test_invalid_values_are_rejected(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings()
