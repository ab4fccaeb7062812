from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.access import router as access_router
from app.api.courses import router as courses_router
from app.api.health import router as health_router
from app.api.invitations import router as invitations_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.orgs import router as orgs_router
from app.api.webhooks import router as webhooks_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.redis import lifespan_redis
from app.db.sanity import lifespan_sanity
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.services.identity_provider import ClerkIdentityProvider, identity_provider
from app.services.mailer import ResendMailer, mailer

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_http_clients() -> AsyncGenerator[None, None]:
    """Close the provider HTTP clients on shutdown."""
    yield
    if isinstance(identity_provider, ClerkIdentityProvider):
        await identity_provider.aclose()
    if isinstance(mailer, ResendMailer):
        await mailer.aclose()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order (LIFO)
    async with lifespan_sanity():
        async with lifespan_redis():
            async with lifespan_http_clients():
                yield


app = FastAPI(
    title="course-access-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(access_router)
app.include_router(courses_router)
app.include_router(health_router)
app.include_router(invitations_router)
app.include_router(orgs_router)
app.include_router(webhooks_router)

logger.info(
    "course-access-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
