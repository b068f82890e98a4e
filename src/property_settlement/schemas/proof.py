"""Pydantic schemas for the Proof API and health check."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class IssueProofRequest(BaseModel):
    """Request body for generating and storing a ZK proof.

    ``private_input`` never leaves the prover: net worth for accreditation,
    country code for jurisdiction.
    """

    owner_identifier: str = Field(..., min_length=1, max_length=128, examples=["user-bob"])
    kind: str = Field(..., examples=["accreditation", "jurisdiction"])
    private_input: int | str = Field(..., examples=[2_000_000, "US"])
    threshold: int | None = Field(
        default=None,
        gt=0,
        description="Public net-worth threshold (accreditation only)",
    )
    restricted_countries: list[str] | None = Field(
        default=None,
        description="Public restricted country list (jurisdiction only)",
    )


class ProofResponse(BaseModel):
    """Response schema for a stored proof. The raw proof blob is not returned."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_identifier: str
    type: str
    verified: bool
    threshold: int | None
    restricted_countries: list[str] | None
    expires_at: datetime
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    ledger: str = "unknown"
