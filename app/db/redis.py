"""Optional Redis connection.

Redis holds one thing for this service: the webhook delivery ledger
(app/services/webhook_ledger.py), a set of provider delivery IDs that
have already been applied, each with a TTL.  It lets a redelivered
webhook short-circuit before touching the record store, and it is
shared across every API instance so a retry landing on another replica
is still recognised.

When REDIS_URL is unset (local dev, tests) redis_pool is None and the
ledger falls back to a per-process dict.  Correctness does not depend
on the ledger: the reconciliation handlers also check natural keys
(payment id, subscription id, clerk id) before creating anything.
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
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify Redis on startup and close the pool on shutdown.

    An unreachable Redis is logged but does not stop the app: the ledger
    degrades to natural-key idempotency only.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, webhook ledger is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
