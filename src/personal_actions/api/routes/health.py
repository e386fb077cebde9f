"""Health and readiness probes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.api.dependencies import DbSession
from personal_actions.config import get_settings
from personal_actions.models import ActionHeader

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Engine health with the database and the action tables probed separately."""

    status: str
    version: str
    timestamp: datetime
    database: str
    action_tables: str


async def _probe(db: AsyncSession, statement, what: str) -> str:
    try:
        await db.execute(statement)
    except SQLAlchemyError:
        logger.warning("Health probe failed: %s", what, exc_info=True)
        await db.rollback()
        return UNHEALTHY
    return HEALTHY


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check(db: DbSession) -> HealthResponse:
    """Report whether the database answers and the action tables exist."""
    database = await _probe(db, text("SELECT 1"), "database")
    action_tables = UNHEALTHY
    if database == HEALTHY:
        action_tables = await _probe(
            db, select(func.count()).select_from(ActionHeader), "personal_action table"
        )

    return HealthResponse(
        status="healthy" if database == action_tables == HEALTHY else "degraded",
        version=get_settings().engine_version,
        timestamp=datetime.now(timezone.utc),
        database=database,
        action_tables=action_tables,
    )


@router.get("/ready")
async def readiness_check(db: DbSession) -> JSONResponse:
    """Ready once the database accepts queries; 503 otherwise."""
    if await _probe(db, text("SELECT 1"), "readiness") != HEALTHY:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable"},
        )
    return JSONResponse(content={"status": "ready"})


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Process is up; no dependencies are checked."""
    return {"status": "alive"}
