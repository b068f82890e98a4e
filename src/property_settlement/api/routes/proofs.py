"""Proof REST API routes.

Routes:
    POST   /api/v1/proofs                 — Generate, verify and store a proof
    GET    /api/v1/proofs/{owner}         — List a party's proofs
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from property_settlement.api.deps import get_proof_service
from property_settlement.logging_config import get_logger
from property_settlement.schemas.proof import IssueProofRequest, ProofResponse

if TYPE_CHECKING:
    from property_settlement.services.proof_service import ProofService

router = APIRouter(prefix="/api/v1/proofs", tags=["Proofs"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=ProofResponse,
    status_code=201,
    summary="Issue a ZK proof",
)
async def issue_proof(
    request: IssueProofRequest,
    svc: ProofService = Depends(get_proof_service),
) -> ProofResponse:
    """Generate a proof through the ledger prover, verify it, and store the result."""
    proof = await svc.issue_proof(
        owner_identifier=request.owner_identifier,
        kind=request.kind,
        private_input=request.private_input,
        threshold=request.threshold,
        restricted_countries=request.restricted_countries,
    )
    return ProofResponse.model_validate(proof)


@router.get(
    "/{owner_identifier}",
    response_model=list[ProofResponse],
    summary="List a party's proofs",
)
async def list_proofs(
    owner_identifier: str,
    kind: str | None = None,
    svc: ProofService = Depends(get_proof_service),
) -> list[ProofResponse]:
    return [ProofResponse.model_validate(p) for p in await svc.list_proofs(owner_identifier, kind)]
