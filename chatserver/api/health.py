"""
Health check endpoints for liveness and readiness probes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from chatserver.core.config import Settings, get_settings
from chatserver.core.database import check_db_connection, get_db
from chatserver.core.logging import get_logger
from chatserver.schemas.message import HealthResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always returns 200 to indicate the service is alive."
)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness probe",
    description="Returns 200 if the message store is reachable."
)
async def readiness(
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """
    Readiness probe.

    Checks:
    - the message store answers a trivial query
    - WEBHOOK_SECRET is configured (reported only; the chat API works without it)
    """
    checks = {}

    db_ok = check_db_connection(db)
    checks["database"] = "ok" if db_ok else "failed"
    checks["webhook_secret"] = "ok" if settings.is_webhook_secret_configured else "not configured"

    if db_ok:
        return HealthResponse(status="ok", checks=checks)

    logger.warning("Readiness check failed: database not reachable")
    response.status_code = 503
    return HealthResponse(status="not ready", checks=checks)
