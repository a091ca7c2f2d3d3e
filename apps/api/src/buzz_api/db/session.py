from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from buzz_api.core.settings import settings


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine.

    SQLite has no row locks, so every transaction is opened with
    ``BEGIN IMMEDIATE``: writers are serialized at BEGIN and the balance read
    that follows can no longer be stale. On PostgreSQL the services rely on
    ``SELECT ... FOR UPDATE`` instead.
    """

    engine = create_async_engine(database_url, echo=echo, future=True)
    if make_url(database_url).get_backend_name() == "sqlite":
        _serialize_sqlite_writers(engine)
    return engine


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; anything not committed by the handler is rolled back."""

    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
