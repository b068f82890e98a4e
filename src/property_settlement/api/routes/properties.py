"""Property REST API routes.

Routes:
    POST   /api/v1/properties                              — Mint a property
    GET    /api/v1/properties                              — List properties
    GET    /api/v1/properties/consumption/pending          — Unconsumed notes
    GET    /api/v1/properties/{id}                         — Get property details
    POST   /api/v1/properties/{id}/list                    — Publish a property
    POST   /api/v1/properties/{id}/delist                  — Withdraw a property
    POST   /api/v1/properties/{id}/verification/submit     — Submit for verification
    POST   /api/v1/properties/{id}/verification/approve    — Approve verification
    POST   /api/v1/properties/{id}/verification/reject     — Reject verification
    GET    /api/v1/properties/{id}/verification/history    — Verification audit
    GET    /api/v1/properties/{id}/consumption             — Note consumption status
    POST   /api/v1/properties/{id}/consumption/retry       — Retry note consumption
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from property_settlement.api.deps import get_consumption_worker, get_property_service
from property_settlement.domain.exceptions import ValidationError
from property_settlement.logging_config import get_logger
from property_settlement.schemas.property import (
    ConsumptionStatusResponse,
    ListPropertyRequest,
    MintPropertyRequest,
    PropertyResponse,
    VerificationActionRequest,
    VerificationHistoryResponse,
)

if TYPE_CHECKING:
    from property_settlement.services.consumption_worker import ConsumptionWorker
    from property_settlement.services.property_service import PropertyService

router = APIRouter(prefix="/api/v1/properties", tags=["Properties"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Mint & list
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=PropertyResponse,
    status_code=201,
    summary="Mint a property on the ledger",
)
async def mint_property(
    request: MintPropertyRequest,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    """Mint the asset, store it as a draft, and start note consumption in the background."""
    prop = await svc.mint_property(**request.model_dump())
    return PropertyResponse.model_validate(prop)


@router.get(
    "",
    response_model=list[PropertyResponse],
    summary="List properties",
)
async def list_properties(
    status: str | None = None,
    owner: str | None = None,
    svc: PropertyService = Depends(get_property_service),
) -> list[PropertyResponse]:
    """List properties by status (default ``listed``) and/or owner."""
    props = await svc.list_properties(status=status, owner_user_identifier=owner)
    return [PropertyResponse.model_validate(p) for p in props]


@router.post(
    "/{property_id}/list",
    response_model=PropertyResponse,
    summary="Publish a property",
)
async def publish_property(
    property_id: str,
    request: ListPropertyRequest,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    prop = await svc.list_property(property_id, **request.model_dump())
    return PropertyResponse.model_validate(prop)


@router.post(
    "/{property_id}/delist",
    response_model=PropertyResponse,
    summary="Withdraw a property from sale",
)
async def delist_property(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    prop = await svc.delist_property(property_id)
    return PropertyResponse.model_validate(prop)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@router.post(
    "/{property_id}/verification/submit",
    response_model=PropertyResponse,
    summary="Submit a property for verification",
)
async def submit_verification(
    property_id: str,
    request: VerificationActionRequest,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    prop = await svc.submit_for_verification(property_id, request.performed_by, request.notes)
    return PropertyResponse.model_validate(prop)


@router.post(
    "/{property_id}/verification/approve",
    response_model=PropertyResponse,
    summary="Approve a property's verification",
)
async def approve_verification(
    property_id: str,
    request: VerificationActionRequest,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    prop = await svc.approve_verification(property_id, request.performed_by, request.notes)
    return PropertyResponse.model_validate(prop)


@router.post(
    "/{property_id}/verification/reject",
    response_model=PropertyResponse,
    summary="Reject a property's verification",
)
async def reject_verification(
    property_id: str,
    request: VerificationActionRequest,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    """Reject verification. ``notes`` carries the mandatory reason."""
    if not request.notes:
        raise ValidationError("A rejection reason is required", field="notes")
    prop = await svc.reject_verification(property_id, request.performed_by, request.notes)
    return PropertyResponse.model_validate(prop)


@router.get(
    "/{property_id}/verification/history",
    response_model=list[VerificationHistoryResponse],
    summary="Get verification audit trail",
)
async def verification_history(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> list[VerificationHistoryResponse]:
    history = await svc.verification_history(property_id)
    return [VerificationHistoryResponse.model_validate(h) for h in history]


# ---------------------------------------------------------------------------
# Note consumption
# ---------------------------------------------------------------------------


@router.get(
    "/consumption/pending",
    response_model=list[ConsumptionStatusResponse],
    summary="List properties whose minted note is not consumed yet",
)
async def pending_consumptions(
    worker: ConsumptionWorker = Depends(get_consumption_worker),
) -> list[ConsumptionStatusResponse]:
    return [ConsumptionStatusResponse(**row) for row in await worker.pending_consumptions()]


@router.get(
    "/{property_id}/consumption",
    response_model=ConsumptionStatusResponse,
    summary="Get note consumption status",
)
async def consumption_status(
    property_id: str,
    worker: ConsumptionWorker = Depends(get_consumption_worker),
) -> ConsumptionStatusResponse:
    return ConsumptionStatusResponse(**await worker.consumption_status(property_id))


@router.post(
    "/{property_id}/consumption/retry",
    response_model=ConsumptionStatusResponse,
    status_code=202,
    summary="Retry note consumption",
)
async def retry_consumption(
    property_id: str,
    worker: ConsumptionWorker = Depends(get_consumption_worker),
) -> ConsumptionStatusResponse:
    """Restart consumption of a failed (or stuck pending) note. 409 while one is in flight."""
    return ConsumptionStatusResponse(**await worker.request_retry(property_id))


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{property_id}",
    response_model=PropertyResponse,
    summary="Get property details",
)
async def get_property(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    prop = await svc.get_property(property_id)
    return PropertyResponse.model_validate(prop)
