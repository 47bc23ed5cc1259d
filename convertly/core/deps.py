"""Dependency injection for FastAPI routes."""

from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

# Re-export auth dependencies for convenience
from convertly.core.auth import CurrentShop, get_current_shop, require_admin_token
from convertly.core.config import settings
from convertly.core.database import get_async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Alias for get_async_session used by route signatures."""
    async for session in get_async_session():
        yield session


# Shared Redis connection pool
_redis_pool: aioredis.ConnectionPool | None = None


def _get_redis_pool() -> aioredis.ConnectionPool:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url), decode_responses=True
        )
    return _redis_pool


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Yield a Redis client from the shared connection pool."""
    pool = _get_redis_pool()
    r = aioredis.Redis(connection_pool=pool)
    try:
        yield r
    finally:
        await r.aclose()


# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[aioredis.Redis, Depends(get_redis)]


__all__ = [
    "CurrentShop",
    "DBSession",
    "RedisClient",
    "get_current_shop",
    "get_db",
    "get_redis",
    "require_admin_token",
]
