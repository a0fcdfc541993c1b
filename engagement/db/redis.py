"""Redis connection management.

When REDIS_URL is configured we create one async connection pool for the
process; when it is not (local dev, tests) ``redis_pool`` is None and every
consumer falls back to its in-memory implementation.

Redis backs the progress document store (one hash per learner/course,
HSET merges fields) and the behavioral event log (one list per session).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # str in, str out
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the pool on startup and close it on shutdown.

    A failed ping is logged, not raised: the service still starts, and
    saves report failure until Redis comes back.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; Redis features use in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
