from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from affiliate_ledger.core.constants import (
    DEFAULT_ENV_FILE,
    MAX_REFERRAL_LEVELS,
    SECRETS_DIR,
    SERVICE_NAME,
)


class Environment(StrEnum):
    """Deployment environments supported by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class DatabaseSettings(BaseModel):
    """Database connectivity configuration."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DATABASE__URL", "database__url", "DATABASE_URL", "database_url", "url"
        ),
    )
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr = SecretStr("postgres")
    name: str = SERVICE_NAME.replace("-", "_")
    echo: bool = False

    @computed_field
    @property
    def dsn(self) -> str:
        """Assemble the SQLAlchemy async DSN."""
        if self.url is not None:
            return str(self.url)

        password = quote_plus(self.password.get_secret_value())
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


def _default_level_rates() -> dict[int, Decimal]:
    return {1: Decimal("0.15"), 2: Decimal("0.05")}


class CommissionSettings(BaseModel):
    """Per-level commission rates and the refund-protection window."""

    model_config = ConfigDict(extra="ignore")

    level_rates: dict[int, Decimal] = Field(default_factory=_default_level_rates)
    confirmation_window_days: int = Field(default=7, ge=0, le=365)

    @field_validator("level_rates")
    @classmethod
    def _validate_rates(cls, value: dict[int, Decimal]) -> dict[int, Decimal]:
        if 1 not in value:
            raise ValueError("a level 1 commission rate is required")
        for level, rate in value.items():
            if level < 1 or level > MAX_REFERRAL_LEVELS:
                raise ValueError(f"unsupported commission level {level}")
            if rate < 0 or rate > 1:
                raise ValueError(f"commission rate for level {level} must be in [0, 1]")
        return dict(sorted(value.items()))


class WithdrawalSettings(BaseModel):
    """Cash-out fee and limits."""

    model_config = ConfigDict(extra="ignore")

    fee_rate: Decimal = Field(
        default=Decimal("0.02"),
        ge=Decimal("0"),
        lt=Decimal("1"),
    )
    min_amount: Decimal = Field(default=Decimal("10.00"), gt=Decimal("0"))


class ConfirmationSweepSettings(BaseModel):
    """Schedule for the periodic PENDING -> CONFIRMED sweep."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    interval_minutes: int = Field(default=60, ge=1, le=24 * 60)


class Settings(BaseSettings):
    """Application settings loaded from the environment or secret stores."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_nested_delimiter="__",
        secrets_dir=SECRETS_DIR,
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    commission: CommissionSettings = Field(default_factory=CommissionSettings)
    withdrawal: WithdrawalSettings = Field(default_factory=WithdrawalSettings)
    confirmation: ConfirmationSweepSettings = Field(
        default_factory=ConfirmationSweepSettings
    )

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        self.log_level = self.log_level.upper()

        if self.environment in {Environment.DEVELOPMENT, Environment.TEST}:
            self.debug = True

        return self

    @computed_field
    @property
    def is_testing(self) -> bool:
        return self.environment is Environment.TEST

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
