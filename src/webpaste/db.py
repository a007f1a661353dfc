"""Database connection and session management.

webpaste runs on a single local SQLite file through aiosqlite. Write
transactions open with ``BEGIN IMMEDIATE``: SQLite then hands out the write
lock up front, so a check-then-write sequence (tail uniqueness check plus
insert, ref-count upsert, GC sweeps) can never interleave with another
writer. Sessions marked with ``begin_read_only`` open a deferred ``BEGIN``
instead and read a WAL snapshot without waiting for the write lock.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from webpaste.models import Base

if TYPE_CHECKING:
    from webpaste.config import Settings

# Seconds a connection waits for the write lock before failing
BUSY_TIMEOUT = 30.0

READ_ONLY_OPTION: Final[str] = "webpaste_read_only"


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for ``settings.database_file``."""
    settings.database_file.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        connect_args={"timeout": BUSY_TIMEOUT},
    )
    _install_sqlite_hooks(engine)
    return engine


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    # pysqlite's implicit BEGIN is deferred; take over transaction control
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def begin_read_only(session: AsyncSession) -> None:
    """Start ``session``'s transaction as a deferred, read-only one.

    Must be the first thing done with a fresh session; the execution option
    only applies when the connection is first procured.
    """
    await session.connection(execution_options={READ_ONLY_OPTION: True})


async def init_db(engine: AsyncEngine) -> None:
    """Create the ``files`` and ``urls`` tables and the expiry index."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
