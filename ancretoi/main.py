"""
Ancre-toi API - Main Application
================================

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

from ancretoi import __version__
from ancretoi.config import settings
from ancretoi.core.errors import setup_exception_handlers
from ancretoi.db.session import close_db, init_db
from ancretoi.curriculum import get_catalog
from ancretoi.services.cache import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that enriches every New Relic transaction with
    custom attributes for filtering, alerting and dashboards.

    Raw ASGI keeps the route handler in the same task, so New Relic's
    contextvars-based span propagation still sees Redis and DB spans.

    Captures: response status, latency, HTTP method, route pattern, and
    user ID (when authenticated).
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # until the real one is seen

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
                # Route pattern (e.g. "/api/v1/member/{program}/day/{day}") for grouping
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                client = scope.get("client")
                client_ip = client[0] if client else "unknown"

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("http.client_ip", client_ip),
                    ("environment", settings.ENVIRONMENT),
                ])

                # Attach user_id if present (set by auth dependency)
                state = scope.get("state")
                user_id = state.get("user_id") if isinstance(state, dict) else None
                if user_id:
                    newrelic.agent.add_custom_attribute("enduser.id", str(user_id))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown of the database engine and the Redis
    client. Startup continues when either is unreachable so the health
    check still answers.
    """
    logger.info("Starting Ancre-toi API (%s)", settings.ENVIRONMENT)

    if settings.auth_disabled:
        logger.warning("Authentication is DISABLED (DEV_AUTH_DISABLED=true)")
        logger.warning("All requests resolve to the development admin. Never use this in production.")

    try:
        await init_db()
    except Exception as e:
        logger.error("Database connection failed: %s", e)

    try:
        await init_redis()
    except Exception as e:
        logger.error("Redis connection failed: %s", e)

    yield

    logger.info("Shutting down Ancre-toi API")
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Ancre-toi API",
    description="""
## Ancre-toi course platform backend

### Features
- **Member runner**: day-by-day programs with autosaved answers (HTTP and WebSocket)
- **Progress**: enrollments, day states, intro engagement, streaks, summaries and notes export
- **Account**: preferences, profile, password change and reset, deletion and data export
- **Back-office**: categories, posts, programs, users and newsletter administration
- **Public**: blog, program catalogue and double opt-in newsletter

### Rate Limits
- Authentication: 5 requests/minute
- Newsletter subscription: 5 requests/minute
- Admin creation: 30 requests/minute
- Public catalogue and blog reads: 100 requests/minute
    """,
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Permission denied"},
        404: {"description": "Resource not found"},
        409: {"description": "Resource conflict"},
        422: {"description": "Validation error"},
        429: {"description": "Rate limit exceeded"},
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

    Reports Redis reachability and the packaged programs. A Redis outage
    only degrades the report; the API keeps serving.
    """
    redis_status = "ok"
    try:
        await (await get_redis()).ping()
    except Exception as e:
        logger.warning("Health check: Redis unavailable: %s", e)
        redis_status = "unavailable"

    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "redis": redis_status,
        "programs": get_catalog().slugs(),
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Ancre-toi API",
        "version": __version__,
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from ancretoi.api.v1 import account, auth, blog, member, newsletter, programs
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(member.router, prefix="/api/v1/member", tags=["Member"])
app.include_router(account.router, prefix="/api/v1/settings", tags=["Settings"])
app.include_router(programs.router, prefix="/api/v1/programs", tags=["Programs"])
app.include_router(blog.router, prefix="/api/v1/blog", tags=["Blog"])
app.include_router(newsletter.router, prefix="/api/v1/newsletter", tags=["Newsletter"])

# Back-office (admin only)
from ancretoi.api.v1 import (
    admin_blog,
    admin_newsletter,
    admin_preferences,
    admin_programs,
    admin_users,
)
app.include_router(admin_users.router, prefix="/api/v1/admin/users", tags=["Admin: Users"])
app.include_router(admin_blog.router, prefix="/api/v1/admin/blog", tags=["Admin: Blog"])
app.include_router(admin_programs.router, prefix="/api/v1/admin/programs", tags=["Admin: Programs"])
app.include_router(admin_newsletter.router, prefix="/api/v1/admin/newsletter", tags=["Admin: Newsletter"])
app.include_router(admin_preferences.router, prefix="/api/v1/admin/preferences", tags=["Admin: Preferences"])
