"""Health-check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from sqlalchemy import text

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus a database round-trip."""
    database_ok = True
    try:
        async with request.app.state.database.session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health check database query failed: %s", exc)
        database_ok = False
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
