"""Offer REST API routes.

Routes:
    POST   /api/v1/offers                      — Make an offer (Idempotency-Key aware)
    POST   /api/v1/offers/expire               — Expire stale pending offers
    GET    /api/v1/offers/property/{id}        — Offers on a property
    GET    /api/v1/offers/buyer/{identifier}   — Offers by a buyer
    GET    /api/v1/offers/{id}                 — Get offer details
    GET    /api/v1/offers/{id}/status          — Lightweight status check
    GET    /api/v1/offers/{id}/events          — Audit trail
    POST   /api/v1/offers/{id}/accept          — Accept and fund escrow
    POST   /api/v1/offers/{id}/reject          — Reject
    POST   /api/v1/offers/{id}/refund          — Refund a funded escrow (operator)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from property_settlement.api.deps import IdempotencyGuard, get_offer_service
from property_settlement.logging_config import get_logger
from property_settlement.schemas.offer import (
    AcceptOfferRequest,
    CreateOfferRequest,
    ExpireOffersResponse,
    OfferEventResponse,
    OfferResponse,
    OfferStatusResponse,
    RefundEscrowRequest,
    RejectOfferRequest,
)

if TYPE_CHECKING:
    from property_settlement.services.offer_service import OfferService

router = APIRouter(prefix="/api/v1/offers", tags=["Offers"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=OfferResponse,
    status_code=201,
    summary="Make an offer on a listed property",
)
async def create_offer(
    request: CreateOfferRequest,
    svc: OfferService = Depends(get_offer_service),
    idempotency_key: str | None = Depends(IdempotencyGuard("offer_create")),
) -> OfferResponse:
    """Create a pending offer. 403 with the missing proofs if the buyer is not eligible."""
    offer = await svc.create_offer(
        property_id=request.property_id,
        buyer_account_id=request.buyer_account_id,
        buyer_user_identifier=request.buyer_user_identifier,
        offer_price=request.offer_price,
    )
    return OfferResponse.model_validate(offer)


@router.post(
    "/expire",
    response_model=ExpireOffersResponse,
    summary="Expire stale pending offers",
)
async def expire_offers(
    svc: OfferService = Depends(get_offer_service),
) -> ExpireOffersResponse:
    return ExpireOffersResponse(expired=await svc.expire_stale_offers())


# ---------------------------------------------------------------------------
# Accept / reject / refund
# ---------------------------------------------------------------------------


@router.post(
    "/{offer_id}/accept",
    response_model=OfferResponse,
    summary="Accept an offer and fund its escrow",
)
async def accept_offer(
    offer_id: str,
    request: AcceptOfferRequest,
    svc: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    """Transitions pending -> accepted once the escrow is created and funded."""
    offer = await svc.accept_offer(offer_id, actor=request.actor)
    return OfferResponse.model_validate(offer)


@router.post(
    "/{offer_id}/reject",
    response_model=OfferResponse,
    summary="Reject an offer",
)
async def reject_offer(
    offer_id: str,
    request: RejectOfferRequest,
    svc: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    offer = await svc.reject_offer(offer_id, reason=request.reason, actor=request.actor)
    return OfferResponse.model_validate(offer)


@router.post(
    "/{offer_id}/refund",
    response_model=OfferResponse,
    summary="Refund a funded escrow to the buyer",
)
async def refund_escrow(
    offer_id: str,
    request: RefundEscrowRequest,
    svc: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    offer = await svc.refund_escrow(offer_id, actor=request.actor, reason=request.reason)
    return OfferResponse.model_validate(offer)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/property/{property_id}",
    response_model=list[OfferResponse],
    summary="List offers on a property",
)
async def offers_for_property(
    property_id: str,
    svc: OfferService = Depends(get_offer_service),
) -> list[OfferResponse]:
    return [OfferResponse.model_validate(o) for o in await svc.list_offers_for_property(property_id)]


@router.get(
    "/buyer/{buyer_user_identifier}",
    response_model=list[OfferResponse],
    summary="List offers made by a buyer",
)
async def offers_for_buyer(
    buyer_user_identifier: str,
    svc: OfferService = Depends(get_offer_service),
) -> list[OfferResponse]:
    offers = await svc.list_offers_for_buyer(buyer_user_identifier)
    return [OfferResponse.model_validate(o) for o in offers]


@router.get(
    "/{offer_id}",
    response_model=OfferResponse,
    summary="Get offer details",
)
async def get_offer(
    offer_id: str,
    svc: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    return OfferResponse.model_validate(await svc.get_offer(offer_id))


@router.get(
    "/{offer_id}/status",
    response_model=OfferStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    offer_id: str,
    svc: OfferService = Depends(get_offer_service),
) -> OfferStatusResponse:
    """Return the current status and allowed next actions."""
    return OfferStatusResponse(**await svc.get_status(offer_id))


@router.get(
    "/{offer_id}/events",
    response_model=list[OfferEventResponse],
    summary="Get audit trail",
)
async def get_events(
    offer_id: str,
    svc: OfferService = Depends(get_offer_service),
) -> list[OfferEventResponse]:
    """Return the full audit trail for an offer."""
    events = await svc.get_events(offer_id)
    return [OfferEventResponse.model_validate(e) for e in events]
