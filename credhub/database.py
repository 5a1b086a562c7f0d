from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from credhub.config import get_settings

settings = get_settings()


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINTs roll back correctly.

    The sqlite3 driver otherwise defers BEGIN on its own, which breaks
    ``Session.begin_nested()`` used by the webhook sync.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(
    settings.async_database_url,
    echo=False,
    pool_pre_ping=True,
)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for configs, saved tokens and webhooks."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request and commit it when the endpoint returns.

    Services only flush; any exception rolls the whole request back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
