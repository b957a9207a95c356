"""
Nutrilytics Billing API - Main Application
==========================================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nutrilytics.config import settings
from nutrilytics.core.errors import setup_exception_handlers
from nutrilytics.db.session import close_db, init_db
from nutrilytics.schemas.common import ErrorResponse
from nutrilytics.services.cache import close_redis, init_redis
from nutrilytics.services.scheduler import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that enriches every New Relic transaction with
    custom attributes for filtering and alerting.

    Uses raw ASGI instead of BaseHTTPMiddleware so the route handler runs
    in the same task and New Relic's contextvars-based spans stay attached.

    Captures: response status, latency, HTTP method, route pattern, and
    the caller's user id when one was resolved.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # default until we capture the real one

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("environment", settings.ENVIRONMENT),
                ])

                # user_id is stored on request.state by get_current_user_id
                state = scope.get("state") or {}
                user_id = (
                    state.get("user_id")
                    if isinstance(state, dict)
                    else getattr(state, "user_id", None)
                )
                if user_id:
                    newrelic.agent.add_custom_attribute("enduser.id", str(user_id))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown of:
    - Database connection
    - Redis connection
    - Maintenance job scheduler
    """
    logger.info("Starting Nutrilytics Billing API...")

    if settings.webhook_auth_disabled:
        logger.warning(
            "RevenueCat webhooks accept UNAUTHENTICATED requests "
            "(REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED=true). Do not use in production."
        )
    elif not settings.REVENUECAT_WEBHOOK_SECRET:
        logger.warning("REVENUECAT_WEBHOOK_SECRET is not set; all webhooks will be rejected")

    # Continue startup even if a backend is down (for health checks)
    try:
        await init_db()
    except Exception as e:
        logger.error("Database connection failed: %s", e)

    try:
        await init_redis()
    except Exception as e:
        logger.error("Redis connection failed: %s", e)

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    logger.info("Shutting down Nutrilytics Billing API...")
    shutdown_scheduler()
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Nutrilytics Billing API",
    description="""
## Nutrilytics Subscription & Usage Quota Service

Backend for premium entitlements and free-tier limits.

### Features
- **Webhooks**: RevenueCat subscription lifecycle events
- **Subscription**: Status, free trial, cancellation and win-back offers
- **Features**: Premium gating and daily usage quotas

### Free-tier daily limits
- Barcode scans: 5
- Photo scans: 3
- AI coach messages: 3
- Meal planning: premium only
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Feature locked"},
        409: {"model": ErrorResponse, "description": "Resource conflict"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Daily quota exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# New Relic transaction enrichment (adds custom attrs to every transaction)
app.add_middleware(NewRelicTransactionMiddleware)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Nutrilytics Billing API",
        "version": "1.0.0",
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from nutrilytics.api.v1 import features, subscription, webhooks
app.include_router(subscription.router, prefix="/api/v1/subscription", tags=["Subscription"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
app.include_router(features.router, prefix="/api/v1/features", tags=["Features"])
