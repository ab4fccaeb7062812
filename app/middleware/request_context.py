"""Request context middleware.

Every inbound request (page-guard access check, provider webhook, admin
action) gets a request ID held in a ContextVar.  A log record factory
copies it onto every LogRecord, so the several provider calls one access
decision makes can be grouped back together in the log stream.

ContextVar rather than a thread-local: requests interleave on one event
loop thread, and each asyncio task carries its own copy of the context.

Provider webhooks arrive with their own delivery IDs (svix-id,
Stripe event id).  Those are logged by the webhook router as event_id;
the request ID here stays the transport-level correlation key.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


_base_record_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs) -> logging.LogRecord:
    """Attach the current request ID to every LogRecord, whichever logger made it."""
    record = _base_record_factory(*args, **kwargs)
    record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
    return record


# Install once; a re-import must not wrap the factory twice
if getattr(logging.getLogRecordFactory(), "__name__", "") != "_record_factory":
    logging.setLogRecordFactory(_record_factory)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, log a summary line.

    An incoming X-Request-ID header is honoured so a caller (the web
    frontend, a load balancer) can correlate its own logs with ours.
    The ID is echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            logger.info(
                "%s %s → %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = req_id
        return response
