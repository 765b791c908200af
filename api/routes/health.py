"""Health check API routes.

- GET /health - Basic liveness check
- GET /health/ready - Readiness check (DB connectivity)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from socialsync.db.engine import get_session_dependency
from socialsync.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health() -> dict:
    """Basic liveness check. No authentication required."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(session: Annotated[Session, Depends(get_session_dependency)]) -> dict:
    """Readiness check.

    Raises:
        HTTPException 503: Database unavailable
    """
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("database_health_check_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready: database unavailable",
        )
    return {"status": "ok", "database": True}
