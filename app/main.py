"""
RTO Compliance Hub

Main FastAPI application with security hardening.
"""

import logging
import os
import secrets
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.v1.api import api_router, webhook_router
from app.core import config
from app.core.database import async_session_maker, close_db, engine, init_db
from app.core.errors import register_exception_handlers
from app.core.logging_config import set_request_id, setup_logging
from app.core.rate_limiter import limiter, rate_limit_exceeded_handler
from app.core.seed import seed_database
from app.core.utils import utcnow
from app.models.audit import AuditAction
from app.auth.audit import create_audit_log
from app.schemas.common import HealthResponse
from app.services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifespan (startup/shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    setup_logging()
    logger.info("Starting %s %s", config.APP_NAME, config.APP_VERSION)

    await init_db()
    async with async_session_maker() as session:
        await seed_database(session)

    start_scheduler()

    yield

    logger.info("Shutting down %s", config.APP_NAME)
    stop_scheduler()
    await close_db()


# =============================================================================
# FastAPI Application
# =============================================================================

docs_enabled = os.getenv("ENABLE_DOCS", "true").lower() == "true"

app = FastAPI(
    title=f"{config.APP_NAME} API",
    version=config.APP_VERSION,
    description="Compliance management for Registered Training Organisations",
    lifespan=lifespan,
    docs_url="/docs" if docs_enabled else None,
    redoc_url="/redoc" if docs_enabled else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
register_exception_handlers(app)


# =============================================================================
# Security Middleware
# =============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), gyroscope=(), "
            "magnetometer=(), microphone=(), payment=(), usb=()"
        )

        # Swagger UI needs its CDN assets
        if request.url.path in ("/docs", "/redoc"):
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "img-src 'self' data: https://fastapi.tiangolo.com"
            )
        else:
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HSTS (only enable in production with HTTPS)
        if os.getenv("ENABLE_HSTS", "false").lower() == "true":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID for tracing; also exposed to log records."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or secrets.token_urlsafe(8)
        request.state.request_id = request_id
        set_request_id(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class AuditMiddleware(BaseHTTPMiddleware):
    """Record an access_denied audit entry for 401/403 responses on the API."""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        if response.status_code in (401, 403) and request.url.path.startswith(config.API_PREFIX):
            # Failed logins are audited by the login endpoint itself
            if request.url.path != f"{config.API_PREFIX}/auth/login":
                await self._record(request, response.status_code)

        return response

    async def _record(self, request: Request, status_code: int) -> None:
        entry = create_audit_log(
            request=request,
            user=None,
            action=AuditAction.ACCESS_DENIED,
            resource_type="endpoint",
            resource_name=f"{request.method} {request.url.path}",
            details={"status_code": status_code},
            success=False,
            user_email=getattr(request.state, "user_email", None),
        )
        entry.user_id = getattr(request.state, "user_id", None)
        try:
            async with async_session_maker() as session:
                session.add(entry)
                await session.commit()
        except Exception:
            logger.exception("Could not record access_denied audit entry")


# =============================================================================
# Add Middleware (order matters - first added = last executed)
# =============================================================================

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(AuditMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Trusted hosts (prevent host header attacks)
trusted_hosts = os.getenv("TRUSTED_HOSTS", "localhost,127.0.0.1").split(",")
if "*" not in trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)


# =============================================================================
# Routes
# =============================================================================

@app.get("/", tags=["root"])
def home():
    """Root endpoint."""
    return {
        "name": config.APP_NAME,
        "version": config.APP_VERSION,
        "docs": "/docs" if docs_enabled else None,
        "api": config.API_PREFIX,
    }


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    db_status = "connected"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database failure: %s", e)
        db_status = "unavailable"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        version=config.APP_VERSION,
        database=db_status,
        timestamp=utcnow(),
    )


app.include_router(api_router, prefix=config.API_PREFIX)
app.include_router(webhook_router, prefix=config.API_PREFIX)


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )
