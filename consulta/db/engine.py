"""Database engine, session factory, Redis client and their lifecycle.

PostgreSQL through SQLAlchemy 2.0 async + asyncpg holds appointments,
coupons and the audit trail. Redis only backs the coupon rate limiter.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from consulta.config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(config: DatabaseSettings, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        config.database_url,
        echo=echo,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # records are detached snapshots; nothing is lazily reloaded after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.db, echo=settings.log_level == "DEBUG")
async_session_factory = build_session_factory(engine)
redis_client: aioredis.Redis = aioredis.from_url(settings.db.redis_url, decode_responses=True)


# ── Lifecycle ────────────────────────────────────────────────────────


async def init_db() -> None:
    """Check PostgreSQL is reachable. Outside production, create missing tables.

    Production schemas come from the Alembic migrations.
    """
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if not settings.is_production:
            from consulta.models import Base

            await conn.run_sync(Base.metadata.create_all)


async def check_redis() -> bool:
    """Ping Redis. Unreachable Redis only disables rate limiting."""
    try:
        await redis_client.ping()
    except (RedisError, OSError):
        logger.warning("Redis unreachable at startup; coupon rate limiting will fail open")
        return False
    return True


async def close_db() -> None:
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the stores for the lifetime of the app."""
    await init_db()
    await check_redis()
    try:
        yield
    finally:
        await close_db()
