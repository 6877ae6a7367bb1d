# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database connection and session management."""

import os
from collections.abc import AsyncGenerator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from miko_server.config import settings
from miko_server.models.base import Base


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # WAL lets the scanner's writer thread coexist with async readers
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=10000")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _own_transactions(dbapi_connection, connection_record) -> None:
    # pysqlite defers BEGIN until the first DML, which breaks SAVEPOINT; let SQLAlchemy emit it
    dbapi_connection.isolation_level = None


def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)


_ensure_parent_dir(settings.database.dsn)

engine = create_async_engine(
    settings.database_url,
    echo=False,
    connect_args={"timeout": 30},
)
event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def create_sync_engine() -> Engine:
    """Blocking engine on the same database file, used by the scanner threads.
    Transactions are explicit so the saver can use savepoints."""
    sync_engine = create_engine(
        settings.sync_database_url,
        echo=False,
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    event.listen(sync_engine, "connect", _sqlite_pragmas)
    event.listen(sync_engine, "connect", _own_transactions)
    event.listen(sync_engine, "begin", _emit_begin)
    return sync_engine


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI that yields a database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables. Call at startup."""
    import miko_server.models  # noqa: F401  registers every table on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
