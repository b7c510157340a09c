"""Redis connection management.

Redis backs every piece of shared badge state when REDIS_URL is set:
the core ledger mappings (holder state, creators, proposals), the
generic metadata key-value store, and the badge event queue.  When it
is not set (local dev, tests), each consumer falls back to an in-memory
implementation and no Redis server is needed.

Every consumer checks ``redis_pool is None`` at import time and picks
its implementation once, so a process never mixes backends.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook: verify connectivity, release the pool."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, badge state is held in memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Unlike a cache, the ledger cannot degrade to memory once the
        # singletons are bound to Redis.  Log loudly; /health reports it.
        logger.exception("Redis connection failed on startup")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
