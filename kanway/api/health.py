"""Health check endpoints"""

import logging
from typing import Any

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.config import settings
from kanway.db.database import get_db
from kanway.db.models import Acceptance, HeroWallet, ServiceRequest, WalletTransaction, WithdrawalRequest
from kanway.utils.time import utcnow

logger = logging.getLogger(__name__)
router = APIRouter()

CORE_TABLES = (ServiceRequest, Acceptance, HeroWallet, WalletTransaction, WithdrawalRequest)


@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "service": "Kanway API",
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Readiness: database, the request and wallet tables, and Redis"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = "healthy" if result.scalar() == 1 else "unhealthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"

    tables: dict[str, str] = {}
    if checks["database"] == "healthy":
        for model in CORE_TABLES:
            try:
                await db.execute(select(func.count()).select_from(model))
                tables[model.__tablename__] = "healthy"
            except SQLAlchemyError as e:
                logger.error(f"Table check failed for {model.__tablename__}: {e}")
                await db.rollback()
                tables[model.__tablename__] = "unavailable"

    if settings.redis_url:
        client = redis.from_url(str(settings.redis_url))
        try:
            await client.ping()
            checks["redis"] = "healthy"
        except (redis.RedisError, OSError) as e:
            logger.error(f"Redis health check failed: {e}")
            checks["redis"] = "unhealthy"
        finally:
            await client.aclose()
    else:
        checks["redis"] = "disabled"

    # Redis only backs rate limiting, so losing it degrades rather than fails
    overall_status = "healthy"
    if "unhealthy" in checks.values():
        overall_status = "degraded"
    if checks["database"] == "unhealthy" or "unavailable" in tables.values():
        overall_status = "unhealthy"

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat(),
        "checks": checks,
        "tables": tables,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}
