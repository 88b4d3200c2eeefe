from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AccountInfo(BaseModel):
    """Payout destination supplied with a withdrawal request."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=128)
    number: str = Field(..., min_length=5, max_length=64)
    bank_name: str | None = Field(default=None, max_length=128)
    notes: str | None = Field(default=None, max_length=500)
