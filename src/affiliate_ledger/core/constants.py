"""Global constants for the affiliate ledger."""

from __future__ import annotations

from decimal import Decimal

SERVICE_NAME = "affiliate-ledger"
DEFAULT_ENV_FILE = ".env"
SECRETS_DIR = "/run/secrets"

# Currency minor unit; every stored amount is quantised to it.
MONEY_QUANTUM = Decimal("0.01")
# The referral programme pays two tiers at most.
MAX_REFERRAL_LEVELS = 2
REFERRAL_CODE_LENGTH = 12
# A lost reservation race is retried exactly this many times.
RESERVATION_RETRIES = 1
