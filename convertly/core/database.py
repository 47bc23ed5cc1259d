"""Async database engine and session factory."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from convertly.core.config import settings

engine = create_async_engine(
    str(settings.database_url),
    echo=False,
    future=True,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for a single request."""
    async with async_session_maker() as session:
        yield session


def upsert_insert(db: AsyncSession, table: Any) -> Any:
    """Return a dialect-specific INSERT that supports ON CONFLICT.

    PostgreSQL is the production backend; SQLite shares the same
    ``on_conflict_do_update`` API and backs the test suite.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)
