# clinicbook/db/sql.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clinicbook.core.config import get_settings

logger = logging.getLogger(__name__)


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # sqlite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(dsn: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """
    Create the async engine. Pool sizing only applies to server databases;
    sqlite (dev/tests) keeps SQLAlchemy's default pool.
    """
    settings = get_settings()
    dsn = dsn or settings.SQL_DSN
    kwargs: dict = {"echo": settings.DB_ECHO if echo is None else echo}
    if not dsn.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_pre_ping=True,
        )
    engine = create_async_engine(dsn, **kwargs)
    if dsn.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)
    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    return build_engine()


@lru_cache()
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(get_engine())


@asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    Context manager for transactional operations.
    Commits on success, rolls back and re-raises on error.
    """
    factory = sessionmaker or get_sessionmaker()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_db(engine: AsyncEngine | None = None) -> bool:
    async with (engine or get_engine()).connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


def import_models() -> None:
    """Import every model module so Base.metadata knows all tables."""
    from clinicbook.modules.users import models as _users  # noqa: F401
    from clinicbook.modules.clinics import models as _clinics  # noqa: F401
    from clinicbook.modules.doctors import models as _doctors  # noqa: F401
    from clinicbook.modules.appointments import models as _appointments  # noqa: F401


async def init_db(engine: AsyncEngine | None = None, *, drop: bool = False) -> None:
    """
    Create all tables (optionally dropping them first).
    """
    from clinicbook.db.base import Base

    import_models()
    engine = engine or get_engine()
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s tables)", len(Base.metadata.tables))
