"""
Health Check Endpoints.

Endpoints:
- /health: Liveness check (process running)
- /health/ready: Readiness check (database and Redis reachable)

Event-delivery health (stuck events, dead-letter backlog) lives under
/api/v1/events/health.
"""

import asyncio
import time
from typing import Any

from fastapi import APIRouter, HTTPException
from sqlalchemy import text

from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import utc_now

router = APIRouter()
logger = get_logger(__name__)


async def check_database() -> dict[str, Any]:
    """
    Check database connectivity.

    Returns:
        Dict with status, latency, and optional error message
    """
    from modules.eventcore.core.database import get_session_factory

    start = time.perf_counter()
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database health check failed", extra={"error": str(e)})
        return {"status": "unhealthy", "error": str(e)}

    return {"status": "healthy", "latency_ms": int((time.perf_counter() - start) * 1000)}


async def check_redis() -> dict[str, Any]:
    """
    Check Redis connectivity.

    Returns:
        Dict with status, latency, and optional error message
    """
    import redis.asyncio as redis

    from modules.eventcore.core.config import get_redis_url

    start = time.perf_counter()
    client = redis.from_url(get_redis_url())
    try:
        await client.ping()
    except Exception as e:
        logger.warning("Redis health check failed", extra={"error": str(e)})
        return {"status": "unhealthy", "error": str(e)}
    finally:
        await client.aclose()

    return {"status": "healthy", "latency_ms": int((time.perf_counter() - start) * 1000)}


@router.get("/health")
async def health_check() -> dict[str, str]:
    """
    Liveness check.

    Returns 200 if the process is running. No dependency checks.
    """
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check() -> dict[str, Any]:
    """
    Readiness check.

    Checks the database and Redis in parallel using TaskGroup.
    Returns 503 if either is unhealthy or the checks time out.
    """
    from modules.eventcore.core.config import get_app_config
    timeout = get_app_config().observability.health_checks.ready_timeout_seconds

    db_result: dict[str, Any] = {"status": "unhealthy", "error": "check did not run"}
    redis_result: dict[str, Any] = {"status": "unhealthy", "error": "check did not run"}

    try:
        async with asyncio.timeout(timeout):
            async with asyncio.TaskGroup() as tg:
                db_task = tg.create_task(check_database())
                redis_task = tg.create_task(check_redis())
            db_result = db_task.result()
            redis_result = redis_task.result()
    except* TimeoutError:
        logger.warning("Readiness checks timed out", extra={"timeout": timeout})
    except* Exception as eg:
        for exc in eg.exceptions:
            logger.warning("Health check task failed", extra={"error": str(exc)})

    checks = {
        "database": db_result,
        "redis": redis_result,
    }

    unhealthy_checks = [
        name for name, check in checks.items()
        if check.get("status") != "healthy"
    ]

    if unhealthy_checks:
        logger.warning(
            "Readiness check failed",
            extra={"unhealthy": unhealthy_checks, "checks": checks},
        )
        raise HTTPException(
            status_code=503,
            detail={
                "status": "unhealthy",
                "checks": checks,
                "timestamp": utc_now().isoformat(),
            },
        )

    return {
        "status": "healthy",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }
