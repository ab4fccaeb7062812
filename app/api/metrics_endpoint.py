"""Prometheus scrape endpoint.

Returns every metric declared in app/core/metrics.py in the text
exposition format, for example:

  # TYPE access_decisions_total counter
  access_decisions_total{access_type="organization"} 812.0
  access_decisions_total{access_type="error"} 3.0
  webhook_events_total{source="stripe",event_type="charge.refunded",outcome="processed"} 2.0

The endpoint is unauthenticated; expose it on the internal network only.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
