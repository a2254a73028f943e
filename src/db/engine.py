"""PostgreSQL and Redis connections shared by the whole process.

PostgreSQL (SQLAlchemy 2.0 async over asyncpg) holds the reports and the
audit trail. Redis holds link-preview cache entries and per-user
rate-limit counters; both of those tolerate Redis being unavailable.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings

logger = logging.getLogger(__name__)

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    pool_size=settings.db.db_pool_size,
    max_overflow=settings.db.db_max_overflow,
    pool_pre_ping=True,
)

# Reports are read after their session closes
async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    engine,
    expire_on_commit=False,
)

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
    socket_timeout=settings.db.redis_timeout_seconds,
    socket_connect_timeout=settings.db.redis_timeout_seconds,
)


async def check_connections() -> dict[str, bool]:
    """Whether PostgreSQL and Redis answer right now (for /health)."""
    status = {"database": False, "redis": False}
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        status["database"] = True
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)
    try:
        status["redis"] = bool(await redis_client.ping())
    except (RedisError, OSError):
        logger.warning("Redis health check failed", exc_info=True)
    return status


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncIterator[None]:
    """Create missing tables (outside production) and close pools on exit.

    In production the schema comes from the Alembic migrations.
    """
    if not settings.is_production:
        from src.models import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured (env=%s)", settings.environment)
    try:
        yield
    finally:
        await engine.dispose()
        await redis_client.aclose()
