"""Pydantic schemas for the Property, verification and consumption APIs."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MintPropertyRequest(BaseModel):
    """Request body for minting a new property on the ledger."""

    owner_account_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Ledger account (alias or 0x address) that receives the minted note",
        examples=["alice"],
    )
    owner_user_identifier: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Application-level identity of the owner",
        examples=["user-alice"],
    )
    title: str = Field(..., min_length=1, max_length=200, examples=["2BR flat, Canal Street"])
    price: int = Field(..., gt=0, description="Asking price in ledger value units")
    kind: str = Field(default="residential", examples=["residential", "commercial", "land"])
    content_ref: str | None = Field(
        default=None,
        max_length=512,
        description="Off-ledger content reference (e.g. an IPFS CID)",
    )
    requires_accreditation: bool = False
    accreditation_threshold: int | None = Field(default=None, gt=0)
    requires_jurisdiction: bool = False
    restricted_countries: list[str] | None = Field(
        default=None,
        description="ISO country codes buyers must not reside in",
        examples=[["KP", "IR"]],
    )
    property_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Caller-chosen id; generated when omitted",
    )


class ListPropertyRequest(BaseModel):
    """Request body for publishing a property. Omitted fields keep their current value."""

    price: int | None = Field(default=None, gt=0)
    requires_accreditation: bool | None = None
    accreditation_threshold: int | None = Field(default=None, gt=0)
    requires_jurisdiction: bool | None = None
    restricted_countries: list[str] | None = None


class VerificationActionRequest(BaseModel):
    """Request body for a verification submit / approve / reject."""

    performed_by: str = Field(..., min_length=1, max_length=128, examples=["admin-1"])
    notes: str | None = Field(
        default=None,
        max_length=2000,
        description="Free-text notes; required as the reason when rejecting",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PropertyResponse(BaseModel):
    """Response schema for a property."""

    model_config = ConfigDict(from_attributes=True)

    property_id: str
    title: str
    kind: str
    content_ref: str | None
    price: int
    status: str
    active_offer_id: str | None
    owner_account_id: str
    owner_user_identifier: str
    note_id: str | None
    mint_tx_id: str | None
    consume_tx_id: str | None
    consume_status: str
    consume_retries: int
    requires_accreditation: bool
    accreditation_threshold: int | None
    requires_jurisdiction: bool
    restricted_countries: list[str] | None
    verification_status: str
    verified_by: str | None
    verified_at: datetime | None
    sold_at: datetime | None
    sold_to: str | None
    sold_price: int | None
    version: int
    created_at: datetime
    updated_at: datetime


class VerificationHistoryResponse(BaseModel):
    """Response schema for one verification audit record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: str
    action: str
    previous_status: str
    new_status: str
    performed_by: str
    notes: str | None
    created_at: datetime


class ConsumptionStatusResponse(BaseModel):
    """Background note consumption status for a property."""

    property_id: str
    consume_status: str
    consume_retries: int
    max_retries: int
    consume_error: str | None = None
    consume_tx_id: str | None = None
    note_id: str | None = None
    consume_started_at: datetime | None = None
    consume_completed_at: datetime | None = None
    ready_for_settlement: bool
    in_flight: bool
    can_retry: bool
