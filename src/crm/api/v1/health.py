"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Cloud Run uses
these to decide whether the container is alive and can serve traffic.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from src.crm.config import get_settings
from src.crm.core.firestore import get_firestore_client
from src.crm.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check Firestore and Redis connectivity. Returns check results dict."""
    checks: dict = {"firestore": "ok", "redis": "ok"}

    try:
        client = get_firestore_client()
        await asyncio.to_thread(lambda: list(client.collection("tenants").limit(1).stream()))
    except Exception as e:
        checks["firestore"] = "error"
        checks["firestore_error"] = str(e)

    try:
        pong = await get_redis_pool().ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 when Firestore and Redis answer, 503 otherwise."""
    checks = await _check_dependencies()
    all_healthy = checks["firestore"] == "ok" and checks["redis"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
