"""Liveness and readiness checks.

``ok`` needs a reachable database; Redis may be ``disabled`` (idempotency
off) without degrading the service. The ledger is reported by mode only:
probing the bridge would cost a blockchain round trip per health check.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from property_settlement.config import get_settings
from property_settlement.infrastructure.database.engine import get_session_factory
from property_settlement.infrastructure.redis_client import redis_status
from property_settlement.logging_config import get_logger
from property_settlement.schemas.proof import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _database_status() -> str:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check() -> HealthResponse:
    database = await _database_status()
    redis = await redis_status()
    degraded = database != "healthy" or redis.startswith("unhealthy")
    return HealthResponse(
        status="degraded" if degraded else "ok",
        database=database,
        redis=redis,
        ledger="simulated" if get_settings().ledger_simulate else "remote",
    )
