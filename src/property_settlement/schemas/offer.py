"""Pydantic schemas for the Offer and Settlement APIs."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateOfferRequest(BaseModel):
    """Request body for making an offer on a listed property."""

    property_id: str = Field(..., min_length=1, max_length=64, examples=["PROP-1A2B3C4D5E6F"])
    buyer_account_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Buyer's ledger account (alias or 0x address)",
        examples=["bob"],
    )
    buyer_user_identifier: str = Field(..., min_length=1, max_length=128, examples=["user-bob"])
    offer_price: int = Field(..., gt=0, description="Offered amount in ledger value units")


class AcceptOfferRequest(BaseModel):
    actor: str = Field(default="SELLER", min_length=1, max_length=128)


class RejectOfferRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    actor: str = Field(default="SELLER", min_length=1, max_length=128)


class RefundEscrowRequest(BaseModel):
    """Operator request to return a funded escrow to the buyer."""

    actor: str = Field(..., min_length=1, max_length=128, examples=["ops-1"])
    reason: str | None = Field(default=None, max_length=2000)


class ExecuteSettlementRequest(BaseModel):
    actor: str = Field(default="SELLER", min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OfferResponse(BaseModel):
    """Response schema for an offer."""

    model_config = ConfigDict(from_attributes=True)

    offer_id: str
    property_id: str
    buyer_account_id: str
    buyer_user_identifier: str
    seller_account_id: str
    offer_price: int
    status: str
    expires_at: datetime
    verified_proofs: list[dict] | None
    rejection_reason: str | None
    buyer_funding_tx_id: str | None
    buyer_funding_failed: bool
    buyer_funding_error: str | None
    buyer_funding_retried: bool
    escrow_id: str | None
    escrow_status: str | None
    escrow_funding_tx_id: str | None
    escrow_refund_tx_id: str | None
    transfer_tx_id: str | None
    release_tx_id: str | None
    needs_reconciliation: bool
    version: int
    accepted_at: datetime | None
    rejected_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OfferStatusResponse(BaseModel):
    """Lightweight status check response."""

    offer_id: str
    status: str
    escrow_id: str | None
    escrow_status: str | None
    expires_at: datetime
    needs_reconciliation: bool
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class OfferEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    offer_id: str
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class ExpireOffersResponse(BaseModel):
    expired: list[str]


class SettlementReadinessResponse(BaseModel):
    """Every settlement precondition and which of them currently block."""

    offer_id: str
    property_id: str
    ready: bool
    checks: dict[str, bool]
    blockers: list[str]
    consume_status: str
    missing_proofs: list[dict] = Field(default_factory=list)


class SettlementResultResponse(BaseModel):
    """Outcome of a settlement execution."""

    offer_id: str
    property_id: str
    offer_status: str
    property_status: str
    transfer_tx_id: str
    release_tx_id: str
    new_owner: str
    bookkeeping_pending: bool


class SettlementRecordResponse(BaseModel):
    """A completed settlement, read back from the offer row."""

    model_config = ConfigDict(from_attributes=True)

    offer_id: str
    property_id: str
    buyer_account_id: str
    seller_account_id: str
    offer_price: int
    escrow_id: str | None
    transfer_tx_id: str | None
    release_tx_id: str | None
    completed_at: datetime | None
