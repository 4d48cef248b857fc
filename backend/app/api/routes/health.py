"""Health check endpoint with a database connectivity probe.

The probe has a short timeout so a stuck database cannot block the
response. A "disconnected" database does not change the overall status:
the endpoint always returns 200 so load balancers keep routing.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request

from app.config import settings
from app.utils.database import ping

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds
VERSION = "0.1.0"


async def _check_database(request: Request) -> str:
    try:
        await asyncio.wait_for(ping(request.app.state.engine), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_database_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check(request: Request) -> dict:
    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "database": await _check_database(request),
        "background_tasks": request.app.state.task_runner.pending_count,
    }
