from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from services.commerce_service.app.settings import CommerceSettings, commerce_settings


def _enable_sqlite_write_serialization(engine: AsyncEngine) -> None:
    """Make every SQLite transaction start with BEGIN IMMEDIATE.

    SQLite has no row locks, so ``SELECT ... FOR UPDATE`` is a no-op there. Taking the
    reserved lock at BEGIN serializes writers the way the wallet row lock does on
    PostgreSQL, and handing BEGIN to SQLAlchemy also makes SAVEPOINT work with the
    pysqlite/aiosqlite drivers.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str | None = None, settings: CommerceSettings | None = None) -> AsyncEngine:
    settings = settings or commerce_settings()
    url = make_url(database_url or settings.async_db_url)

    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(url, echo=False)
        _enable_sqlite_write_serialization(engine)
        return engine

    connect_args: dict = {}
    if url.get_driver_name() == "asyncpg":
        connect_args["server_settings"] = {
            "statement_timeout": str(settings.store_statement_timeout_ms),
        }
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        isolation_level=settings.store_isolation,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)
