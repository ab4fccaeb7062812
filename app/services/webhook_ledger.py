"""Ledger of webhook deliveries that have already been applied.

WHY A LEDGER
------------
Clerk (via Svix) and Stripe both deliver at least once.  A delivery that
timed out on their side is sent again even if we processed it, and a
retry may land on a different API instance.  The reconciliation
handlers are idempotent on natural keys anyway (payment id, Stripe
subscription id, Clerk user id), so the ledger is an optimisation and
a log-noise reducer, not the correctness mechanism: a redelivered event
whose id is already recorded is acknowledged without touching the
record store.

WHEN AN ID IS RECORDED
----------------------
Only after the handler returned successfully.  A delivery that failed
half way must be re-driven in full by the provider's retry, so its id
is never recorded.

WHY TTL
-------
Providers stop retrying after a few days.  Entries expire after
WEBHOOK_LEDGER_TTL_SECONDS (default 7 days) so the ledger never grows
without bound.  Redis SETEX sets value and TTL in one command.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS
from app.db.redis import redis_pool


@runtime_checkable
class WebhookLedger(Protocol):
    async def seen(self, source: str, delivery_id: str) -> bool:
        """True if this delivery was already applied."""
        ...

    async def record(self, source: str, delivery_id: str) -> None:
        """Remember a successfully applied delivery until the TTL lapses."""
        ...


class InMemoryWebhookLedger:
    """Per-process ledger for tests and local dev (no Redis needed)."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = ttl_seconds
        # (source, delivery_id) -> expiry timestamp (Unix seconds)
        self._seen: dict[tuple[str, str], float] = {}

    async def seen(self, source: str, delivery_id: str) -> bool:
        exp = self._seen.get((source, delivery_id))
        if exp is None:
            return False
        # Mimic Redis TTL behaviour: drop expired entries on read
        if exp < time.time():
            del self._seen[(source, delivery_id)]
            return False
        return True

    async def record(self, source: str, delivery_id: str) -> None:
        now = time.time()
        # Sweep on write so ids that are never read again still expire
        for key in [k for k, exp in self._seen.items() if exp < now]:
            del self._seen[key]
        self._seen[(source, delivery_id)] = now + self._ttl


class RedisWebhookLedger:
    """Redis-backed ledger shared by every API instance."""

    _PREFIX = "webhook:delivery:"

    def __init__(self, redis_client, ttl_seconds: int) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    async def seen(self, source: str, delivery_id: str) -> bool:
        return bool(await self._redis.exists(f"{self._PREFIX}{source}:{delivery_id}"))

    async def record(self, source: str, delivery_id: str) -> None:
        await self._redis.setex(
            f"{self._PREFIX}{source}:{delivery_id}", self._ttl, "1"
        )


# ---------------------------------------------------------------------------
# Module-level singleton: conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    webhook_ledger: WebhookLedger = RedisWebhookLedger(
        redis_pool, SETTINGS.webhook_ledger_ttl_seconds
    )
else:
    webhook_ledger = InMemoryWebhookLedger(SETTINGS.webhook_ledger_ttl_seconds)
