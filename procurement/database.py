from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from procurement.config import Settings, settings as default_settings
import structlog

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _normalize_db_url(url: str) -> tuple[str, dict]:
    """Strip sslmode from URL since asyncpg uses connect_args for SSL."""
    connect_args: dict = {}
    if "sslmode=require" in url:
        url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
        connect_args["ssl"] = "require"
    return url, connect_args


def _enable_sqlite_write_locking(engine: AsyncEngine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    The driver otherwise defers BEGIN until the first write, which leaves the
    locked read of a check-then-debit outside the transaction.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    url: str | None = None, config: Settings = default_settings
) -> AsyncEngine:
    url, connect_args = _normalize_db_url(url or config.DATABASE_URL)

    if url.startswith("sqlite"):
        connect_args.setdefault("timeout", 30)
        engine = create_async_engine(
            url, echo=config.DEBUG, connect_args=connect_args
        )
        _enable_sqlite_write_locking(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=config.DEBUG,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency: the session factory built by the app lifespan."""
    return request.app.state.session_factory


async def get_db(request: Request):
    """FastAPI dependency for read-only handlers."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def apply_transaction_timeouts(
    session: AsyncSession, config: Settings = default_settings
) -> None:
    """Bound lock waits and statements for the current transaction (PostgreSQL)."""
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return
    # SET LOCAL does not accept bind parameters; values are ints from settings.
    await session.execute(
        text(f"SET LOCAL lock_timeout = {int(config.DB_LOCK_TIMEOUT_MS)}")
    )
    await session.execute(
        text(f"SET LOCAL statement_timeout = {int(config.DB_STATEMENT_TIMEOUT_MS)}")
    )


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("db_connected", dialect=engine.dialect.name)


async def close_db(engine: AsyncEngine):
    await engine.dispose()
    logger.info("db_disconnected")
