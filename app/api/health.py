"""Health and readiness endpoints.

LIVENESS vs READINESS
---------------------
  /health (liveness + dependency report):
    Always 200 while the process can answer.  The ``status`` field says
    whether any configured dependency is failing ("degraded"), and
    ``checks`` says which one.  Returning 503 here would get the
    container restarted for an outage that is not its fault, such as
    Stripe having a bad minute.

  /ready (readiness):
    200 when this instance can take traffic.  Every adapter has an
    in-memory fallback and every external call fails per request, so
    readiness does not depend on the providers being reachable.

Each check reports one of:
  ok              configured and answering
  degraded        configured but the probe failed
  not_configured  no credentials, the in-memory adapter is in use
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Response

from app.db.redis import redis_pool
from app.db.sanity import sanity_client
from app.services.identity_provider import ClerkIdentityProvider, identity_provider
from app.services.payment_provider import StripePaymentProvider, payment_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _probe(name: str, ping: Callable[[], Awaitable[object]] | None) -> str:
    if ping is None:
        return "not_configured"
    try:
        await ping()
    except Exception as e:
        logger.warning("Health check %s failed: %s", name, e)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    """Liveness probe + dependency status."""
    probes: dict[str, Callable[[], Awaitable[object]] | None] = {
        "redis": redis_pool.ping if redis_pool is not None else None,  # type: ignore[dict-item]
        "record_store": sanity_client.ping if sanity_client is not None else None,
        "identity_provider": identity_provider.ping
        if isinstance(identity_provider, ClerkIdentityProvider)
        else None,
        "payment_provider": payment_provider.ping
        if isinstance(payment_provider, StripePaymentProvider)
        else None,
    }
    checks = {name: await _probe(name, ping) for name, ping in probes.items()}
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: can this instance handle traffic?"""
    return Response(status_code=200)
