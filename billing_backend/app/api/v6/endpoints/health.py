"""
Health check endpoint.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing-accounts", tags=["Health"])


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Check the health of the service.
    
    Returns the number of checks run by this process and a timestamp (ms).
    Responds 503 when the database cannot be reached.
    """
    monitor = request.app.state.health_monitor
    try:
        return await monitor.check(db)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Health check failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error_code": "ERR_UNHEALTHY",
                "message": "Database unavailable",
                "details": {"checksRun": monitor.checks_run}
            }
        )
