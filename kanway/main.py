"""Main FastAPI application for Kanway"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kanway.api import admin, health, profiles, requests, wallets, websockets
from kanway.config import settings
from kanway.db.database import close_db, init_db
from kanway.exceptions import KanwayError, RollbackFailureError
from kanway.middleware.logging import LoggingMiddleware
from kanway.middleware.rate_limit import RateLimitMiddleware
from kanway.middleware.request_id import RequestIDMiddleware
from kanway.utils.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("Starting Kanway application...")

    issues = settings.validate_configuration()
    for warning in issues["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    if issues["errors"]:
        for error in issues["errors"]:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Invalid configuration: " + "; ".join(issues["errors"]))

    await init_db()
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down Kanway application...")
    await close_db()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Kanway API",
    description="""
    ## Local services marketplace

    Requesters post service requests, providers express interest, the
    requester chooses one provider, and the job moves through
    `pending → assigned → active → completed`. Providers hold a dual-balance
    wallet: earnings from in-app jobs and platform fees owed on cash jobs.
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
)

# Configure middleware (order matters - last added runs first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=settings.rate_limit_per_minute,
    requests_per_hour=settings.rate_limit_per_hour,
    enable_rate_limiting=settings.app_env not in ("development", "test"),
)
app.add_middleware(RequestIDMiddleware)


@app.get("/status", response_class=JSONResponse)
async def api_status() -> dict[str, Any]:
    """API status endpoint for programmatic access"""
    return {
        "name": "Kanway API",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs" if settings.app_debug else None,
    }


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(profiles.router, prefix="/api/v1/profiles", tags=["profiles"])
app.include_router(requests.router, prefix="/api/v1/requests", tags=["requests"])
app.include_router(wallets.router, prefix="/api/v1/wallet", tags=["wallet"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(websockets.router, prefix="/api/v1/ws", tags=["websockets"])


@app.exception_handler(KanwayError)
async def kanway_exception_handler(request: Request, exc: KanwayError):
    """Map domain errors to HTTP responses"""
    if isinstance(exc, RollbackFailureError):
        # Already logged at CRITICAL where it happened
        logger.error(f"Unreconciled state on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.message,
            "field": exc.field,
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": str(exc) if settings.app_debug else "An error occurred",
            "field": None,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kanway.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_level=settings.log_level.lower(),
    )
