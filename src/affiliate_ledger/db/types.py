from __future__ import annotations

import datetime as dt
import json
import uuid
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import (
    CHAR,
    JSON,
    DateTime,
    Enum,
    Numeric,
    String,
    TypeDecorator,
)

from affiliate_ledger.core.money import quantize_money


class GUID(TypeDecorator[uuid.UUID]):
    """Platform-independent UUID column.

    Native ``UUID`` on PostgreSQL, ``CHAR(36)`` elsewhere. Accepts UUID
    instances or their canonical string form on the way in.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(
        self, value: uuid.UUID | str | None, dialect: Dialect
    ) -> Any:
        if value is None:
            return value
        if isinstance(value, str):
            value = uuid.UUID(value)
        if not isinstance(value, uuid.UUID):
            raise TypeError("GUID values must be UUID instances")
        if dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class Money(TypeDecorator[Decimal]):
    """Fixed-point amount with two decimal places.

    SQLite has no decimal type, so amounts are stored there as canonical
    strings to keep sums and comparisons lossless in Python. SQL-side
    comparisons against such a column must ``CAST(... AS NUMERIC)`` first.
    """

    impl = Numeric(12, 2)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(12, 2, asdecimal=True))

    def process_bind_param(
        self, value: Decimal | int | str | None, dialect: Dialect
    ) -> Any:
        if value is None:
            return value
        amount = quantize_money(value)
        if dialect.name == "sqlite":
            return str(amount)
        return amount

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return value
        return quantize_money(str(value))


class Rate(TypeDecorator[Decimal]):
    """Fractional rate such as ``0.15`` stored without float drift."""

    impl = Numeric(6, 4)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(16))
        return dialect.type_descriptor(Numeric(6, 4, asdecimal=True))

    def process_bind_param(self, value: Decimal | str | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        rate = Decimal(str(value))
        if dialect.name == "sqlite":
            return str(rate)
        return rate

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return value
        return Decimal(str(value))


JSONValue = dict[str, Any] | list[Any]


class JSONType(TypeDecorator[JSONValue]):
    """JSONB on PostgreSQL, plain JSON elsewhere."""

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: JSONValue | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if not isinstance(value, (dict, list)):
            raise TypeError("JSONType values must be dicts or lists")
        # Round-trip so non-JSON values fail at bind time, not at commit.
        return json.loads(json.dumps(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> JSONValue | None:
        if value is None or isinstance(value, (dict, list)):
            return value
        decoded = json.loads(value)
        if isinstance(decoded, (dict, list)):
            return decoded
        raise TypeError("JSON deserialisation returned unexpected type")


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware datetime that is always normalised to UTC.

    SQLite stores naive values, so results are re-tagged as UTC on load.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: dt.datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if not isinstance(value, dt.datetime):
            raise TypeError("UTCDateTime values must be datetime instances")
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires timezone-aware datetime")
        value = value.astimezone(dt.UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> dt.datetime | None:
        if value is None:
            return value
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value)
        if not isinstance(value, dt.datetime):
            raise TypeError(f"Expected datetime, got {type(value)}")
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


def enum_column_type(enum_cls: type[StrEnum], name: str) -> Enum:
    """Non-native enum column that persists member values, not names."""

    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )
