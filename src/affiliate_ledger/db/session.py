from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine.interfaces import DBAPIConnection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import ConnectionPoolEntry

from affiliate_ledger.core.config import Settings, get_settings

_ENGINE: AsyncEngine | None = None
_SESSION_FACTORY: async_sessionmaker[AsyncSession] | None = None


def configure_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make SQLite transactions real write transactions.

    The sqlite3 driver defers ``BEGIN`` until the first DML statement, which
    breaks SAVEPOINT and lets a read-then-write sequence interleave with a
    concurrent writer. Taking the write lock up front serialises writers the
    way row locks do on PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(
        dbapi_connection: DBAPIConnection, connection_record: ConnectionPoolEntry
    ) -> None:
        dbapi_connection.isolation_level = None  # type: ignore[attr-defined]

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    if dsn.startswith("sqlite"):
        engine = create_async_engine(dsn, echo=echo)
        configure_sqlite_transactions(engine)
        return engine
    return create_async_engine(dsn, echo=echo, pool_pre_ping=True)


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        settings = settings or get_settings()
        _ENGINE = create_engine(settings.database.dsn, echo=settings.database.echo)
    return _ENGINE


def get_session_factory(
    settings: Settings | None = None,
) -> async_sessionmaker[AsyncSession]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = async_sessionmaker(
            get_engine(settings),
            expire_on_commit=False,
            autoflush=False,
        )
    return _SESSION_FACTORY


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""

    factory = session_factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    global _ENGINE, _SESSION_FACTORY

    if _SESSION_FACTORY is not None:
        _SESSION_FACTORY = None

    if _ENGINE is None:
        return

    await _ENGINE.dispose()
    _ENGINE = None


def supports_select_for_update(session: AsyncSession) -> bool:
    """SQLite has no row locks; its writers are serialised by BEGIN IMMEDIATE."""

    bind = session.bind
    if bind is None:
        return False
    return bind.dialect.name not in {"sqlite"}
