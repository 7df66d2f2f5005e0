"""
Health Check Endpoints

Provides:
1. /health - Application and database status
2. /health/live - Liveness probe
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.connection import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Application start time for uptime calculation
_start_time = datetime.utcnow()


@router.get("/health")
def health(session: Session = Depends(get_session)):
    settings = get_settings()
    checks = {}
    try:
        session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "error"

    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "version": settings.version,
            "environment": settings.environment,
            "uptime_seconds": int((datetime.utcnow() - _start_time).total_seconds()),
            "checks": checks,
        },
    )


@router.get("/health/live")
async def liveness():
    return {"status": "alive"}
