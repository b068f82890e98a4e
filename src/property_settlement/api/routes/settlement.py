"""Settlement REST API routes.

Routes:
    GET    /api/v1/settlements                   — Recent completed settlements
    GET    /api/v1/settlements/{offer_id}/ready  — Readiness check (no ledger calls)
    POST   /api/v1/settlements/{offer_id}        — Execute settlement (Idempotency-Key aware)
    GET    /api/v1/settlements/{offer_id}        — Get a completed settlement
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from property_settlement.api.deps import IdempotencyGuard, get_settlement_service
from property_settlement.logging_config import get_logger
from property_settlement.schemas.offer import (
    ExecuteSettlementRequest,
    SettlementReadinessResponse,
    SettlementRecordResponse,
    SettlementResultResponse,
)

if TYPE_CHECKING:
    from property_settlement.services.settlement_service import SettlementOrchestrator

router = APIRouter(prefix="/api/v1/settlements", tags=["Settlement"])
logger = get_logger(__name__)


@router.get(
    "",
    response_model=list[SettlementRecordResponse],
    summary="List recent settlements",
)
async def settlement_history(
    limit: int = Query(default=50, ge=1, le=500),
    svc: SettlementOrchestrator = Depends(get_settlement_service),
) -> list[SettlementRecordResponse]:
    return [SettlementRecordResponse.model_validate(o) for o in await svc.settlement_history(limit)]


@router.get(
    "/{offer_id}/ready",
    response_model=SettlementReadinessResponse,
    summary="Check settlement preconditions",
)
async def check_ready(
    offer_id: str,
    svc: SettlementOrchestrator = Depends(get_settlement_service),
) -> SettlementReadinessResponse:
    return SettlementReadinessResponse(**await svc.check_settlement_ready(offer_id))


@router.post(
    "/{offer_id}",
    response_model=SettlementResultResponse,
    summary="Execute settlement",
)
async def execute_settlement(
    offer_id: str,
    request: ExecuteSettlementRequest,
    svc: SettlementOrchestrator = Depends(get_settlement_service),
    idempotency_key: str | None = Depends(IdempotencyGuard("settlement")),
) -> SettlementResultResponse:
    """Transfer the property to the buyer, then release escrow to the owner.

    A 500 with reason ``inconsistency`` means the transfer succeeded but the
    release did not; the offer is flagged for manual reconciliation.
    """
    result = await svc.execute_settlement(offer_id, actor=request.actor)
    return SettlementResultResponse(**result.to_dict())


@router.get(
    "/{offer_id}",
    response_model=SettlementRecordResponse,
    summary="Get a completed settlement",
)
async def get_settlement(
    offer_id: str,
    svc: SettlementOrchestrator = Depends(get_settlement_service),
) -> SettlementRecordResponse:
    return SettlementRecordResponse.model_validate(await svc.get_settlement(offer_id))
