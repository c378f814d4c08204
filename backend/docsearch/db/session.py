"""Database engine and session utilities.

Attributes:
    engine (AsyncEngine): Primary SQLModel async engine for the relational store.
    SessionLocal (async_sessionmaker): Factory for yielding AsyncSession objects.

Functions:
    create_engine_for_url(url): Build an async engine, preparing SQLite file paths and pragmas.
    enable_sqlite_foreign_keys(engine): Turn on FK enforcement so chunk rows cascade with their document.
    init_db(): Create relational tables and enable WAL journaling for SQLite files.
    get_session(): Dependency that yields an AsyncSession for request handlers.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from docsearch.core.config import get_settings
from docsearch.models import CACHE_TABLE_NAMES

_settings = get_settings()
_LOGGER = logging.getLogger(__name__)

_SQLITE_PREFIX = "sqlite+aiosqlite:///"


def _ensure_sqlite_parent(url: str) -> None:
    if not url.startswith(_SQLITE_PREFIX) or url.endswith(":memory:"):
        return
    db_path = Path(url.replace(_SQLITE_PREFIX, "")).resolve()
    if db_path.parent.name:
        db_path.parent.mkdir(parents=True, exist_ok=True)


def enable_sqlite_foreign_keys(target: AsyncEngine) -> None:
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine_for_url(url: str) -> AsyncEngine:
    _ensure_sqlite_parent(url)
    created = create_async_engine(
        url,
        echo=False,
        connect_args=({"check_same_thread": False} if url.startswith("sqlite") else {}),
    )
    enable_sqlite_foreign_keys(created)
    return created


engine: AsyncEngine = create_engine_for_url(_settings.database_url)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def relational_tables():
    return [table for table in SQLModel.metadata.sorted_tables if table.name not in CACHE_TABLE_NAMES]


async def create_relational_schema(target: AsyncEngine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=relational_tables()))
        if target.dialect.name == "sqlite":
            await _apply_sqlite_pragmas(conn)


async def init_db() -> None:
    await create_relational_schema(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


async def _apply_sqlite_pragmas(conn) -> None:
    """Switch file-backed SQLite databases to WAL journaling."""

    if str(conn.engine.url).endswith(":memory:"):
        return
    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
    except OperationalError:
        _LOGGER.debug("SQLite pragmas not applied", exc_info=True)
