# nassrcards/infra/sql.py
from __future__ import annotations
import asyncio
import os
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from ..logging_config import get_logger
from ..model.db import create_schema

log = get_logger(__name__)

Gated = Callable[[], AsyncContextManager[None]]

# plain driver names -> the async driver we ship with
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
}


def async_url(database_url: str) -> URL:
    url = make_url(database_url)
    return url.set(drivername=ASYNC_DRIVERS.get(url.drivername, url.drivername))


@dataclass
class SqlBackend:
    """Engine, session factory and the DB gate, created together.

    `gated()` caps concurrent DB work: requests wait on the semaphore
    instead of timing out inside the connection pool.
    """
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]
    gated: Gated

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await create_schema(conn)

    async def dispose(self) -> None:
        await self.engine.dispose()


def open_sql(database_url: str, *, gate_limit: Optional[int] = None) -> SqlBackend:
    url = async_url(database_url)
    kw = dict(pool_pre_ping=True)

    if url.get_backend_name() == "postgresql":
        pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )
    else:
        pool_size = 10

    engine = create_async_engine(url, **kw)

    if url.get_backend_name() == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            # concurrent writers wait for the lock instead of failing
            cur.execute("PRAGMA busy_timeout=5000;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            cur.close()

    if gate_limit is None:
        gate_limit = int(os.getenv("DB_GATE_LIMIT", pool_size))
    sem = asyncio.Semaphore(max(1, gate_limit))

    log.info("sql_backend_opened", url=url.render_as_string(hide_password=True),
             gate_limit=gate_limit)
    return SqlBackend(
        engine=engine,
        sessions=async_sessionmaker(
            engine, class_=AsyncSession,
            expire_on_commit=False, autoflush=False,
        ),
        gated=lambda: sem,
    )
