"""
Membership Entitlements API - Main Application
==============================================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.core.errors import setup_exception_handlers
from app.core.metrics import PrometheusMiddleware, render_metrics
from app.db.session import close_db, init_db
from app.services.cache import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events for:
    - Database connection
    - Redis connection
    """
    logger.info("Starting Membership Entitlements API (environment=%s)", settings.ENVIRONMENT)

    if settings.auth_disabled:
        logger.warning(
            "Authentication is DISABLED (DEV_AUTH_DISABLED=true); every request "
            "runs as the development user"
        )

    if not settings.PAYKICKSTART_WEBHOOK_SECRET:
        if settings.is_production:
            logger.error("PAYKICKSTART_WEBHOOK_SECRET is not set; webhooks will be rejected")
        else:
            logger.warning("PAYKICKSTART_WEBHOOK_SECRET is not set; webhooks are accepted UNVERIFIED")

    # Startup continues without the database so /health still answers
    try:
        await init_db()
    except Exception:
        logger.exception("Database connection failed")

    # Redis is optional; the cache degrades to misses
    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis connection failed: %s", e)

    yield

    logger.info("Shutting down Membership Entitlements API")
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Membership Entitlements API",
    description="""
## Membership Entitlements & Billing Reconciliation

Decides who may read premium content and keeps that decision in step with
the billing providers.

### Features
- **Entitlements**: Tiered access checks (Free < Collective < Insider)
- **Subscription status**: One view across Stripe and PayKickstart
- **Webhooks**: Signed, idempotent PayKickstart reconciliation
- **Audit trail**: Every applied subscription transition is logged
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        400: {"description": "Malformed request"},
        401: {"description": "Not authenticated or invalid signature"},
        404: {"description": "Resource not found"},
        409: {"description": "Resource conflict"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
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

# Request count / latency metrics
app.add_middleware(PrometheusMiddleware)

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
        "name": "Membership Entitlements API",
        "version": "1.0.0",
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics."""
    if not settings.METRICS_ENABLED:
        return Response(status_code=404)
    content, media_type = render_metrics()
    return Response(content=content, media_type=media_type)


# =============================================================================
# API Routes
# =============================================================================

from app.api.v1 import access, auth, subscription, webhooks

app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(subscription.router, prefix="/api/v1/subscription", tags=["Subscription"])
app.include_router(access.router, prefix="/api/v1/access", tags=["Access"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
